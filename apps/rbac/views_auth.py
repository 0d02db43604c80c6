"""
Authentication views: registration.
"""
import logging

from django.utils.decorators import method_decorator
from django_ratelimit.decorators import ratelimit
from django_ratelimit.exceptions import Ratelimited
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import extend_schema
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.rbac.serializers import RegistrationSerializer, UserSerializer
from apps.rbac.services import AuthService

logger = logging.getLogger(__name__)


@extend_schema(
    tags=['Authentication'],
    summary='Register a new user',
    description='''
Create a user together with a personal workspace owned by that user.
Returns a bearer token for subsequent requests.

No authentication required. Rate limited to 5 requests per hour per IP.
    ''',
    request=RegistrationSerializer,
    responses={201: OpenApiTypes.OBJECT, 400: OpenApiTypes.OBJECT, 429: OpenApiTypes.OBJECT},
)
@method_decorator(ratelimit(key='ip', rate='5/h', method='POST', block=False), name='dispatch')
class RegistrationView(APIView):
    """
    POST /v1/auth/register
    """
    authentication_classes = []
    permission_classes = []

    def post(self, request):
        if getattr(request, 'limited', False):
            raise Ratelimited()

        serializer = RegistrationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = AuthService.register_user(
            email=serializer.validated_data['email'],
            password=serializer.validated_data['password'],
            first_name=serializer.validated_data['first_name'],
            last_name=serializer.validated_data['last_name'],
        )
        workspace = result['workspace']

        return Response(
            {
                'user': UserSerializer(result['user']).data,
                'workspace': {
                    'id': str(workspace.id),
                    'name': workspace.name,
                    'slug': workspace.slug,
                },
                'token': result['token'],
            },
            status=status.HTTP_201_CREATED
        )
