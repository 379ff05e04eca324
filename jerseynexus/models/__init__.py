# Import all models to register them with SQLModel
from jerseynexus.models.user import User, UserRole, UserStatus
from jerseynexus.models.category import Category, CategoryType
from jerseynexus.models.product import Product, ProductImage, ProductStatus
from jerseynexus.models.order import Order, OrderItem, OrderStatus, PaymentMethod, PaymentStatus
from jerseynexus.models.payment import Payment, TransactionStatus
from jerseynexus.models.review import Review
from jerseynexus.models.cart import CartItem
from jerseynexus.models.blog import Blog

__all__ = [
    "User",
    "UserRole",
    "UserStatus",
    "Category",
    "CategoryType",
    "Product",
    "ProductImage",
    "ProductStatus",
    "Order",
    "OrderItem",
    "OrderStatus",
    "PaymentMethod",
    "PaymentStatus",
    "Payment",
    "TransactionStatus",
    "Review",
    "CartItem",
    "Blog",
]
