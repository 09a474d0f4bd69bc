# Services package.
#
# Each module exposes one entity service class that owns the lifecycle of
# a single entity kind:
#
#   user_service  — UserService: CRUD + email uniqueness + delete policy
#   post_service  — PostService: CRUD + owner existence + publish / feed
#
# Services receive a DataGateway (and any policy) through their
# constructor; the composition root in ``blog_api.dependencies`` wires
# them.  Every public method is a coroutine and a unit of work of its own.
from blog_api.services.post_service import PostService
from blog_api.services.user_service import UserService

__all__ = ["PostService", "UserService"]
