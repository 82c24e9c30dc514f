from django.urls import path, include
from rest_framework.routers import DefaultRouter
from .views import PartnerEarningViewSet, PartnerViewSet

router = DefaultRouter()
router.register(r'partners', PartnerViewSet)
router.register(r'earnings', PartnerEarningViewSet)

urlpatterns = [
    path('', include(router.urls)),
]
