from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from pydantic import Field
from sqlmodel import Session, select

from jerseynexus.core.errors import send_response
from jerseynexus.db.session import get_session
from jerseynexus.models import Product, ProductStatus, User
from jerseynexus.routers.auth import get_current_user_optional, require_admin
from jerseynexus.schemas import CamelModel, PartialUpdate
from jerseynexus.serializers import serialize_image, serialize_product
from jerseynexus.services.product import ProductService
from jerseynexus.services.s3 import upload_image

router = APIRouter()


class ImageIn(CamelModel):
    url: str
    alt_text: Optional[str] = None


class ProductCreate(CamelModel):
    name: str = Field(min_length=2, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    price: float = Field(ge=0)
    sale_price: Optional[float] = Field(default=None, ge=0)
    stock: int = Field(default=0, ge=0)
    category_id: int
    featured: bool = False
    status: ProductStatus = ProductStatus.ACTIVE
    sizes: List[str] = []
    colors: List[str] = []
    brand: Optional[str] = None
    meta_title: Optional[str] = None
    meta_description: Optional[str] = None
    images: List[ImageIn] = []


class ProductUpdate(PartialUpdate):
    nullable_fields = frozenset({"description", "sale_price", "brand", "meta_title", "meta_description"})

    name: Optional[str] = Field(default=None, min_length=2, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    price: Optional[float] = Field(default=None, ge=0)
    sale_price: Optional[float] = Field(default=None, ge=0)
    stock: Optional[int] = Field(default=None, ge=0)
    category_id: Optional[int] = None
    featured: Optional[bool] = None
    status: Optional[ProductStatus] = None
    sizes: Optional[List[str]] = None
    colors: Optional[List[str]] = None
    brand: Optional[str] = None
    meta_title: Optional[str] = None
    meta_description: Optional[str] = None


class ImageOrder(CamelModel):
    id: int
    sort_order: int = Field(ge=0)


class ImageReorder(CamelModel):
    image_orders: List[ImageOrder] = Field(min_length=1)


class ImageUpdate(CamelModel):
    alt_text: Optional[str] = None
    is_primary: Optional[bool] = None


def get_product_service(session: Session = Depends(get_session)) -> ProductService:
    return ProductService(session)


@router.get("/")
def read_products(
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    category_id: Optional[int] = Query(None, alias="categoryId"),
    category: Optional[str] = None,
    search: Optional[str] = None,
    featured: Optional[bool] = None,
    min_price: Optional[float] = Query(None, alias="minPrice"),
    max_price: Optional[float] = Query(None, alias="maxPrice"),
    status: Optional[ProductStatus] = None,
    sort_by: str = Query("createdAt", alias="sortBy"),
    sort_order: str = Query("desc", alias="sortOrder"),
    current_user: Optional[User] = Depends(get_current_user_optional),
    service: ProductService = Depends(get_product_service),
):
    # The storefront only ever sees active products
    if not (current_user and current_user.is_admin):
        status = ProductStatus.ACTIVE
    products, pagination = service.list_products(
        page, limit, category_id, category, search, featured, min_price, max_price,
        status, sort_by, sort_order.lower(),
    )
    return send_response("Products retrieved successfully", {"products": products, "pagination": pagination})


@router.get("/search")
def search_products(q: str = Query(..., min_length=1), service: ProductService = Depends(get_product_service)):
    products = service.search(q)
    return send_response(
        "Search completed successfully",
        {"products": [serialize_product(product) for product in products], "query": q},
    )


@router.get("/slug/{slug}")
def read_product_by_slug(slug: str, session: Session = Depends(get_session)):
    product = session.exec(select(Product).where(Product.slug == slug)).first()
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    service = ProductService(session)
    return send_response("Product retrieved successfully",
                         {"product": serialize_product(product, service.get_reviews(product.id))})


@router.get("/{product_id}")
def read_product(product_id: int, service: ProductService = Depends(get_product_service)):
    product = service.get_product(product_id)
    return send_response("Product retrieved successfully",
                         {"product": serialize_product(product, service.get_reviews(product.id))})


@router.get("/{product_id}/related")
def read_related_products(product_id: int, service: ProductService = Depends(get_product_service)):
    product = service.get_product(product_id)
    related = service.get_related(product)
    return send_response("Related products retrieved successfully",
                         {"products": [serialize_product(item) for item in related]})


@router.post("/")
def create_product(
    product_in: ProductCreate,
    admin: User = Depends(require_admin),
    service: ProductService = Depends(get_product_service),
):
    images = [image.model_dump() for image in product_in.images]
    product = service.create_product(images=images, **product_in.model_dump(exclude={"images"}))
    return send_response("Product created successfully", {"product": serialize_product(product)}, 201)


@router.put("/{product_id}")
def update_product(
    product_id: int,
    product_in: ProductUpdate,
    admin: User = Depends(require_admin),
    service: ProductService = Depends(get_product_service),
):
    product = service.update_product(product_id, **product_in.model_dump(exclude_unset=True))
    return send_response("Product updated successfully", {"product": serialize_product(product)})


@router.delete("/{product_id}")
def delete_product(
    product_id: int,
    admin: User = Depends(require_admin),
    service: ProductService = Depends(get_product_service),
):
    service.delete_product(product_id)
    return send_response("Product deleted successfully")


# Image management

@router.post("/{product_id}/images")
def upload_product_images(
    product_id: int,
    images: List[UploadFile] = File(...),
    alt_text: Optional[str] = Form(None, alias="altText"),
    admin: User = Depends(require_admin),
    service: ProductService = Depends(get_product_service),
):
    service.get_product(product_id)
    keys = [upload_image(image, "products") for image in images]
    product = service.add_images(product_id, keys, alt_text)
    return send_response("Images uploaded successfully",
                         {"images": [serialize_image(image) for image in product.images]}, 201)


# Registered before /{image_id} so "reorder" is not read as an image id
@router.put("/{product_id}/images/reorder")
def reorder_product_images(
    product_id: int,
    reorder: ImageReorder,
    admin: User = Depends(require_admin),
    service: ProductService = Depends(get_product_service),
):
    product = service.reorder_images(product_id, [entry.model_dump() for entry in reorder.image_orders])
    return send_response("Images reordered successfully",
                         {"images": [serialize_image(image) for image in product.images]})


@router.put("/{product_id}/images/{image_id}")
def update_product_image(
    product_id: int,
    image_id: int,
    image_in: ImageUpdate,
    admin: User = Depends(require_admin),
    service: ProductService = Depends(get_product_service),
):
    image = service.update_image(product_id, image_id, image_in.alt_text, image_in.is_primary)
    return send_response("Image updated successfully", {"image": serialize_image(image)})


@router.delete("/{product_id}/images/{image_id}")
def delete_product_image(
    product_id: int,
    image_id: int,
    admin: User = Depends(require_admin),
    service: ProductService = Depends(get_product_service),
):
    service.delete_image(product_id, image_id)
    return send_response("Image deleted successfully")
