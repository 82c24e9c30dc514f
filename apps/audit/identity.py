from django.contrib.auth import get_user_model


def resolve_display(actor):
    """Display identity for an actor: "name <email>", the actor's own name, or None."""
    if not str(actor.id).isdigit():
        return actor.name

    User = get_user_model()
    user = User.objects.filter(pk=int(actor.id)).only('username', 'first_name', 'last_name', 'email').first()
    if user is None:
        return actor.name

    name = user.get_full_name() or user.username
    return f"{name} <{user.email}>" if user.email else name
