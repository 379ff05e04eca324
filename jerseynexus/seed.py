"""Seed an admin account, categories and sample jerseys. Safe to run repeatedly."""
from datetime import datetime

from loguru import logger
from sqlmodel import Session, select

from jerseynexus.core.config import settings
from jerseynexus.core.security import hash_password
from jerseynexus.db.session import create_db_and_tables, engine
from jerseynexus.models import (
    Blog,
    Category,
    CategoryType,
    Product,
    ProductImage,
    User,
    UserRole,
)
from jerseynexus.services.slug import generate_slug

PRODUCT_CATEGORIES = [
    ("Football Jerseys", "Club and national team football kits"),
    ("Cricket Jerseys", "Test, ODI and T20 playing shirts"),
    ("Basketball Jerseys", "NBA and international basketball jerseys"),
    ("Retro Classics", "Throwback kits from legendary seasons"),
]

BLOG_CATEGORIES = [
    ("Kit Stories", "The history behind famous shirts"),
    ("Care Guides", "Keeping your jerseys in match condition"),
]

SIZES = ["S", "M", "L", "XL", "XXL"]

PRODUCTS = [
    {
        "name": "Nepal National Team Home Jersey 2024",
        "category": "Football Jerseys",
        "brand": "Kelme",
        "price": 2500.0,
        "sale_price": 2200.0,
        "stock": 40,
        "featured": True,
        "colors": ["Crimson"],
        "image": "https://images.jerseynexus.com/seed/nepal-home-2024.jpg",
    },
    {
        "name": "Manchester United Home Jersey 2024/25",
        "category": "Football Jerseys",
        "brand": "Adidas",
        "price": 4500.0,
        "stock": 25,
        "featured": True,
        "colors": ["Red"],
        "image": "https://images.jerseynexus.com/seed/man-utd-home-2425.jpg",
    },
    {
        "name": "Real Madrid Away Jersey 2024/25",
        "category": "Football Jerseys",
        "brand": "Adidas",
        "price": 4500.0,
        "sale_price": 3999.0,
        "stock": 18,
        "featured": False,
        "colors": ["Orange"],
        "image": "https://images.jerseynexus.com/seed/real-madrid-away-2425.jpg",
    },
    {
        "name": "Nepal Cricket T20 World Cup Jersey",
        "category": "Cricket Jerseys",
        "brand": "Shiv Sports",
        "price": 2000.0,
        "stock": 60,
        "featured": True,
        "colors": ["Blue", "Red"],
        "image": "https://images.jerseynexus.com/seed/nepal-t20-wc.jpg",
    },
    {
        "name": "Lakers Icon Edition Jersey",
        "category": "Basketball Jerseys",
        "brand": "Nike",
        "price": 5200.0,
        "stock": 12,
        "featured": False,
        "colors": ["Gold"],
        "image": "https://images.jerseynexus.com/seed/lakers-icon.jpg",
    },
    {
        "name": "Brazil 1970 Retro Home Shirt",
        "category": "Retro Classics",
        "brand": "Score Draw",
        "price": 3500.0,
        "stock": 15,
        "featured": True,
        "colors": ["Yellow"],
        "image": "https://images.jerseynexus.com/seed/brazil-1970.jpg",
    },
]


def seed_admin(session: Session) -> User:
    admin = session.exec(select(User).where(User.email == settings.ADMIN_EMAIL)).first()
    if admin:
        logger.info(f"admin {admin.email} already exists")
        return admin
    admin = User(
        name="JerseyNexus Admin",
        email=settings.ADMIN_EMAIL,
        password_hash=hash_password(settings.ADMIN_PASSWORD),
        role=UserRole.ADMIN,
    )
    session.add(admin)
    session.commit()
    session.refresh(admin)
    logger.info(f"created admin {admin.email}")
    return admin


def seed_categories(session: Session, entries, category_type: CategoryType) -> dict:
    categories = {}
    for name, description in entries:
        slug = generate_slug(name)
        category = session.exec(select(Category).where(Category.slug == slug)).first()
        if not category:
            category = Category(name=name, slug=slug, type=category_type, description=description)
            session.add(category)
            logger.info(f"created {category_type.value.lower()} category {name}")
        categories[name] = category
    session.commit()
    return categories


def seed_products(session: Session, categories: dict) -> int:
    created = 0
    for entry in PRODUCTS:
        slug = generate_slug(entry["name"])
        if session.exec(select(Product).where(Product.slug == slug)).first():
            continue
        product = Product(
            name=entry["name"],
            slug=slug,
            description=f"Official {entry['name']} by {entry['brand']}. Breathable fabric, printed crest.",
            brand=entry["brand"],
            price=entry["price"],
            sale_price=entry.get("sale_price"),
            stock=entry["stock"],
            featured=entry["featured"],
            category_id=categories[entry["category"]].id,
            sizes=SIZES,
            colors=entry["colors"],
        )
        product.images.append(ProductImage(url=entry["image"], alt_text=entry["name"], is_primary=True))
        session.add(product)
        created += 1
    session.commit()
    return created


def seed_blog(session: Session, author: User, categories: dict):
    slug = "how-to-wash-your-football-jersey"
    if session.exec(select(Blog).where(Blog.slug == slug)).first():
        return
    session.add(Blog(
        title="How to Wash Your Football Jersey",
        slug=slug,
        excerpt="Turn it inside out, skip the dryer and keep the print intact.",
        content="Wash jerseys inside out in cold water, never iron the print and let them dry flat in the shade.",
        category_id=categories["Care Guides"].id,
        author_id=author.id,
        tags=["care", "football"],
        published=True,
        published_at=datetime.utcnow(),
    ))
    session.commit()


def main():
    logger.info("Creating database and tables...")
    create_db_and_tables()
    with Session(engine) as session:
        admin = seed_admin(session)
        product_categories = seed_categories(session, PRODUCT_CATEGORIES, CategoryType.PRODUCT)
        blog_categories = seed_categories(session, BLOG_CATEGORIES, CategoryType.BLOG)
        created = seed_products(session, product_categories)
        seed_blog(session, admin, blog_categories)
    logger.info(f"Seeding finished, {created} new product(s)")


if __name__ == "__main__":
    main()
