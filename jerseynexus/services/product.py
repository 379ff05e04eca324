from datetime import datetime
from typing import List, Optional

from fastapi import HTTPException
from loguru import logger
from sqlalchemy import or_
from sqlmodel import Session, select

from jerseynexus.models import CartItem, Category, OrderItem, Product, ProductImage, ProductStatus, Review
from jerseynexus.serializers import paginate, serialize_product
from jerseynexus.services.s3 import s3_service
from jerseynexus.services.slug import unique_slug

PRODUCT_SORT_FIELDS = {"createdAt": Product.created_at, "price": Product.price, "name": Product.name}


class ProductService:
    def __init__(self, session: Session):
        self.session = session

    def get_product(self, product_id: int) -> Product:
        product = self.session.get(Product, product_id)
        if not product:
            raise HTTPException(status_code=404, detail="Product not found")
        return product

    def get_reviews(self, product_id: int) -> List[Review]:
        return self.session.exec(
            select(Review).where(Review.product_id == product_id).order_by(Review.created_at.desc())
        ).all()

    def list_products(self, page: int = 1, limit: int = 12, category_id: Optional[int] = None,
                      category: Optional[str] = None, search: Optional[str] = None,
                      featured: Optional[bool] = None, min_price: Optional[float] = None,
                      max_price: Optional[float] = None, status: Optional[ProductStatus] = None,
                      sort_by: str = "createdAt", sort_order: str = "desc"):
        statement = select(Product)
        if category_id is not None:
            statement = statement.where(Product.category_id == category_id)
        elif category:
            statement = statement.join(Category, Category.id == Product.category_id).where(Category.slug == category)
        if search:
            pattern = f"%{search}%"
            statement = statement.where(or_(
                Product.name.ilike(pattern),
                Product.description.ilike(pattern),
                Product.brand.ilike(pattern),
            ))
        if featured is not None:
            statement = statement.where(Product.featured == featured)
        if min_price is not None:
            statement = statement.where(Product.price >= min_price)
        if max_price is not None:
            statement = statement.where(Product.price <= max_price)
        if status is not None:
            statement = statement.where(Product.status == status)

        column = PRODUCT_SORT_FIELDS.get(sort_by, Product.created_at)
        statement = statement.order_by(column.asc() if sort_order == "asc" else column.desc())

        products, pagination = paginate(self.session, statement, page, limit)
        return [serialize_product(product) for product in products], pagination

    def search(self, query: str, limit: int = 20) -> List[Product]:
        pattern = f"%{query}%"
        return self.session.exec(
            select(Product)
            .where(Product.status == ProductStatus.ACTIVE)
            .where(or_(Product.name.ilike(pattern), Product.description.ilike(pattern), Product.brand.ilike(pattern)))
            .order_by(Product.name)
            .limit(limit)
        ).all()

    def get_related(self, product: Product, limit: int = 4) -> List[Product]:
        if product.category_id is None:
            return []
        return self.session.exec(
            select(Product)
            .where(Product.category_id == product.category_id)
            .where(Product.id != product.id)
            .where(Product.status == ProductStatus.ACTIVE)
            .order_by(Product.created_at.desc())
            .limit(limit)
        ).all()

    def _check_category(self, category_id: Optional[int]):
        if category_id is not None and not self.session.get(Category, category_id):
            raise HTTPException(status_code=400, detail="Category not found")

    def create_product(self, images: Optional[List[dict]] = None, **fields) -> Product:
        self._check_category(fields.get("category_id"))
        product = Product(**fields, slug=unique_slug(self.session, Product, fields["name"]))
        if product.stock == 0:
            product.status = ProductStatus.OUT_OF_STOCK
        for index, image in enumerate(images or []):
            product.images.append(ProductImage(
                url=image["url"],
                alt_text=image.get("alt_text") or product.name,
                is_primary=index == 0,
                sort_order=index,
            ))
        self.session.add(product)
        self.session.commit()
        self.session.refresh(product)
        logger.info(f"product created: {product.slug} (#{product.id})")
        return product

    def update_product(self, product_id: int, **fields) -> Product:
        product = self.get_product(product_id)
        if "category_id" in fields:
            self._check_category(fields["category_id"])
        if fields.get("name") and fields["name"] != product.name:
            product.slug = unique_slug(self.session, Product, fields["name"], exclude_id=product.id)
        for key, value in fields.items():
            setattr(product, key, value)

        # Keep the stock status in step with the stock level
        if product.stock == 0 and product.status == ProductStatus.ACTIVE:
            product.status = ProductStatus.OUT_OF_STOCK
        elif product.stock > 0 and product.status == ProductStatus.OUT_OF_STOCK:
            product.status = ProductStatus.ACTIVE

        product.updated_at = datetime.utcnow()
        self.session.add(product)
        self.session.commit()
        self.session.refresh(product)
        return product

    def delete_product(self, product_id: int) -> None:
        product = self.get_product(product_id)
        image_keys = [key for key in (s3_service.key_from_url(image.url) for image in product.images) if key]

        for model in (CartItem, Review):
            for row in self.session.exec(select(model).where(model.product_id == product.id)).all():
                self.session.delete(row)
        # Orders keep their lines and show a placeholder for the product
        for item in self.session.exec(select(OrderItem).where(OrderItem.product_id == product.id)).all():
            item.product_id = None
            self.session.add(item)

        self.session.delete(product)
        self.session.commit()
        for key in image_keys:
            s3_service.delete_file(key)
        logger.info(f"product #{product_id} deleted with {len(image_keys)} image(s)")

    # Image management

    def add_images(self, product_id: int, keys: List[str], alt_text: Optional[str] = None) -> Product:
        product = self.get_product(product_id)
        has_primary = any(image.is_primary for image in product.images)
        next_order = max((image.sort_order for image in product.images), default=-1) + 1
        for offset, key in enumerate(keys):
            product.images.append(ProductImage(
                url=key,
                alt_text=alt_text or product.name,
                is_primary=not has_primary and offset == 0,
                sort_order=next_order + offset,
            ))
        self.session.add(product)
        self.session.commit()
        self.session.refresh(product)
        return product

    def get_image(self, product_id: int, image_id: int) -> ProductImage:
        image = self.session.get(ProductImage, image_id)
        if not image or image.product_id != product_id:
            raise HTTPException(status_code=404, detail="Image not found")
        return image

    def reorder_images(self, product_id: int, image_orders: List[dict]) -> Product:
        product = self.get_product(product_id)
        images = {image.id: image for image in product.images}
        for entry in image_orders:
            image = images.get(entry["id"])
            if image is None:
                raise HTTPException(status_code=400, detail=f"Image {entry['id']} does not belong to this product")
            image.sort_order = entry["sort_order"]
            self.session.add(image)
        self.session.commit()
        self.session.refresh(product)
        return product

    def update_image(self, product_id: int, image_id: int, alt_text: Optional[str] = None,
                     is_primary: Optional[bool] = None) -> ProductImage:
        image = self.get_image(product_id, image_id)
        if alt_text is not None:
            image.alt_text = alt_text
        if is_primary:
            for other in self.session.exec(select(ProductImage).where(ProductImage.product_id == product_id)).all():
                if other.id != image.id and other.is_primary:
                    other.is_primary = False
                    self.session.add(other)
            image.is_primary = True
        image.updated_at = datetime.utcnow()
        self.session.add(image)
        self.session.commit()
        self.session.refresh(image)
        return image

    def delete_image(self, product_id: int, image_id: int) -> None:
        image = self.get_image(product_id, image_id)
        was_primary = image.is_primary
        key = s3_service.key_from_url(image.url)
        self.session.delete(image)
        self.session.flush()

        if was_primary:
            successor = self.session.exec(
                select(ProductImage).where(ProductImage.product_id == product_id).order_by(ProductImage.sort_order)
            ).first()
            if successor:
                successor.is_primary = True
                self.session.add(successor)
        self.session.commit()
        if key:
            s3_service.delete_file(key)
