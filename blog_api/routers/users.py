from fastapi import APIRouter, Depends, Query

from blog_api.dependencies import PaginationParams, get_post_service, get_user_service
from blog_api.schemas import PaginatedResponse, UserCreate, UserUpdate
from blog_api.services import PostService, UserService

router = APIRouter(prefix="/api/v1/users", tags=["users"])

@router.get("", response_model=PaginatedResponse)
async def list_users(
    search: str | None = Query(None, description="Substring of name or email."),
    email: str | None = None,
    pagination: PaginationParams = Depends(),
    users: UserService = Depends(get_user_service),
):
    filters = {"search": search, "email": email}
    return await users.list(filters, **pagination.as_kwargs())

@router.post("", status_code=201)
async def create_user(data: UserCreate, users: UserService = Depends(get_user_service)):
    return await users.create(data)

@router.get("/{user_id}")
async def get_user(user_id: int, users: UserService = Depends(get_user_service)):
    return await users.get(user_id)

@router.patch("/{user_id}")
async def update_user(
    user_id: int, data: UserUpdate, users: UserService = Depends(get_user_service)
):
    return await users.update(user_id, data)

@router.delete("/{user_id}", status_code=204)
async def delete_user(user_id: int, users: UserService = Depends(get_user_service)):
    await users.delete(user_id)

@router.get("/{user_id}/posts", response_model=PaginatedResponse)
async def list_user_posts(
    user_id: int,
    published: bool | None = Query(None, description="false lists the user's drafts."),
    pagination: PaginationParams = Depends(),
    posts: PostService = Depends(get_post_service),
):
    return await posts.by_owner(user_id, published, **pagination.as_kwargs())
