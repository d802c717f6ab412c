"""
Product Store - read-only catalog queries plus the admin stock adjustment.
"""
import logging
from collections import Counter
from typing import Dict, List, Optional

from django.db import transaction
from django.db.models import F, Q

from apps.core.exceptions import NotFoundException, ValidationException
from .models import Product

logger = logging.getLogger(__name__)

FEATURED_LIMIT = 5


def list_products(category: Optional[str] = None, search: Optional[str] = None,
                  featured: bool = False, limit: int = 50, offset: int = 0):
    """
    Active products, featured first then newest.
    """
    products = Product.objects.filter(is_active=True)

    if category and category != 'all':
        products = products.filter(category__icontains=category)

    if search:
        products = products.filter(Q(name__icontains=search) | Q(description__icontains=search))

    if featured:
        products = products.filter(is_featured=True)

    return products.order_by('-is_featured', '-created_at')[offset:offset + limit]


def get_product(product_id) -> Product:
    product = Product.objects.filter(id=product_id, is_active=True).first()
    if product is None:
        raise NotFoundException("Product", product_id)
    return product


def featured_products() -> List[Product]:
    return list(
        Product.objects.filter(is_active=True, is_featured=True).order_by('-created_at')[:FEATURED_LIMIT]
    )


def list_categories() -> List[Dict]:
    counts = Counter()
    for category in Product.objects.filter(is_active=True).exclude(category='').values_list('category', flat=True):
        for name in category.split(','):
            name = name.strip()
            if name:
                counts[name] += 1

    return [
        {'value': name, 'label': name.replace('-', ' ').title(), 'count': count}
        for name, count in sorted(counts.items())
    ]


def adjust_stock(product_id, quantity: Optional[int] = None, delta: Optional[int] = None) -> Product:
    """
    Set the stock to `quantity`, or move it by `delta`. Stock never goes negative.
    """
    if (quantity is None) == (delta is None):
        raise ValidationException("Provide exactly one of quantity or delta")
    if quantity is not None and quantity < 0:
        raise ValidationException("Stock quantity cannot be negative", field='quantity')

    with transaction.atomic():
        product = Product.objects.select_for_update().filter(id=product_id).first()
        if product is None:
            raise NotFoundException("Product", product_id)

        if quantity is not None:
            product.stock_quantity = quantity
            product.save(update_fields=['stock_quantity', 'updated_at'])
        else:
            updated = (
                Product.objects
                .filter(id=product_id, stock_quantity__gte=-delta if delta < 0 else 0)
                .update(stock_quantity=F('stock_quantity') + delta)
            )
            if not updated:
                raise ValidationException("Stock quantity cannot go below zero", field='delta')
            product.refresh_from_db(fields=['stock_quantity'])

    logger.info(f"Stock for product {product_id} now {product.stock_quantity}")
    return product
