from rest_framework_simplejwt.authentication import JWTAuthentication
from rest_framework_simplejwt.exceptions import InvalidToken, AuthenticationFailed


class GraphQLJWTMiddleware:
    """Authenticate GraphQL requests with the same bearer tokens as the REST API.

    DRF views authenticate on their own; the GraphQL view only sees
    ``request.user``, so it is resolved here from the Authorization header.
    """

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        if request.path.startswith('/graphql/'):
            token = self.get_token_from_request(request)
            if token is not None:
                auth = JWTAuthentication()
                try:
                    validated_token = auth.get_validated_token(token)
                    request.user = auth.get_user(validated_token)
                except (InvalidToken, AuthenticationFailed):
                    # Left as anonymous; mutations reject it
                    pass

        return self.get_response(request)

    def get_token_from_request(self, request):
        header = request.META.get('HTTP_AUTHORIZATION')
        if header and header.startswith('Bearer '):
            return header.split(' ')[1].encode('utf-8')
        return None
