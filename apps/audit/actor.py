from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Actor:
    """Who is performing a mutation, as recorded in the audit trail."""

    id: str
    name: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @classmethod
    def from_request(cls, request):
        user = request.user
        forwarded = request.META.get('HTTP_X_FORWARDED_FOR')
        ip_address = forwarded.split(',')[0].strip() if forwarded else request.META.get('REMOTE_ADDR')
        return cls(
            id=str(user.pk),
            name=getattr(user, 'email', None) or None,
            ip_address=ip_address or None,
            user_agent=request.META.get('HTTP_USER_AGENT', '')[:512] or None,
        )


SYSTEM = Actor(id='system', name='Scheduled job')
