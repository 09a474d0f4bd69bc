from fastapi import APIRouter, Depends, Query

from blog_api.dependencies import PaginationParams, get_post_service
from blog_api.schemas import PaginatedResponse, PostCreate, PostUpdate
from blog_api.services import PostService

router = APIRouter(prefix="/api/v1", tags=["posts"])

@router.get("/posts", response_model=PaginatedResponse)
async def list_posts(
    owner_id: int | None = None,
    published: bool | None = None,
    search: str | None = Query(None, description="Substring of title or content."),
    pagination: PaginationParams = Depends(),
    posts: PostService = Depends(get_post_service),
):
    filters = {"owner_id": owner_id, "published": published, "search": search}
    return await posts.list(filters, **pagination.as_kwargs())

@router.get("/feed", response_model=PaginatedResponse)
async def feed(
    search: str | None = None,
    pagination: PaginationParams = Depends(),
    posts: PostService = Depends(get_post_service),
):
    return await posts.feed(search, **pagination.as_kwargs())

@router.post("/posts", status_code=201)
async def create_post(data: PostCreate, posts: PostService = Depends(get_post_service)):
    return await posts.create(data)

@router.get("/posts/{post_id}")
async def get_post(post_id: int, posts: PostService = Depends(get_post_service)):
    return await posts.get(post_id)

@router.patch("/posts/{post_id}")
async def update_post(
    post_id: int, data: PostUpdate, posts: PostService = Depends(get_post_service)
):
    return await posts.update(post_id, data)

@router.put("/posts/{post_id}/publish")
async def publish_post(post_id: int, posts: PostService = Depends(get_post_service)):
    return await posts.publish(post_id)

@router.delete("/posts/{post_id}", status_code=204)
async def delete_post(post_id: int, posts: PostService = Depends(get_post_service)):
    await posts.delete(post_id)
