from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response

from apps.authentication.permissions import IsTenantAdmin
from . import services
from .serializers import AuditEntrySerializer, AuditQuerySerializer


@api_view(['GET'])
@permission_classes([IsTenantAdmin])
def audit_log(request):
    """Configuration and state audit trail, newest first"""
    params = AuditQuerySerializer(data=request.query_params)
    params.is_valid(raise_exception=True)

    page = services.query(**params.validated_data)

    return Response({
        'logs': AuditEntrySerializer(page.object_list, many=True).data,
        'pagination': {
            'total': page.paginator.count,
            'page': page.number,
            'limit': page.paginator.per_page,
            'pages': page.paginator.num_pages,
            'has_more': page.has_next(),
        },
    })
