"""
Demo Data Generator for the GreenTap storefront

Seeds the supplement catalog, an admin account, customers, and COD orders
placed through the real order workflow so stock and statuses stay consistent.
"""
import os
import sys
import random
from decimal import Decimal

# Add the project root to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Setup Django
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings')

import django
django.setup()

from django.utils.text import slugify
from faker import Faker

from apps.accounts.models import User
from apps.accounts.services import register_user
from apps.payguard.models import Payment
from apps.shipstream.models import Delivery, TrackingEvent
from apps.shopcore.models import Order, OrderItem, Product
from apps.shopcore.services import OrderWorkflow

fake = Faker('en_IN')


class SilentNotifier:
    """Seeded orders must not email or text anyone."""

    def notify_order(self, order, milestone):
        return []


PRODUCT_CATALOG = [
    ('Vitamin D3 2000 IU', 'vitamins,immunity', 349, ['Supports bone health', 'Boosts immunity'], ['Cholecalciferol']),
    ('Vitamin B12 Methylcobalamin', 'vitamins,wellness', 299, ['Supports energy levels', 'Nerve health'], ['Methylcobalamin']),
    ('Vitamin C 1000mg with Zinc', 'vitamins,immunity', 399, ['Antioxidant support', 'Immune defence'], ['Ascorbic acid', 'Zinc gluconate']),
    ('Multivitamin for Men', 'vitamins,wellness', 649, ['Daily nutrition', 'Stamina'], ['Vitamin A', 'Vitamin E', 'Ginseng']),
    ('Multivitamin for Women', 'vitamins,wellness', 649, ['Daily nutrition', 'Hair and skin'], ['Biotin', 'Iron', 'Folic acid']),
    ('Magnesium Glycinate', 'minerals,wellness', 549, ['Sleep quality', 'Muscle relaxation'], ['Magnesium bisglycinate']),
    ('Calcium + Vitamin D3', 'minerals', 399, ['Bone density'], ['Calcium carbonate', 'Cholecalciferol']),
    ('Iron Bisglycinate', 'minerals', 329, ['Healthy haemoglobin'], ['Ferrous bisglycinate', 'Vitamin C']),
    ('Whey Protein Isolate 1kg', 'proteins,fitness', 2899, ['Muscle recovery', '27g protein per scoop'], ['Whey protein isolate']),
    ('Plant Protein 1kg', 'proteins,fitness', 2199, ['Vegan protein', 'Easy digestion'], ['Pea protein', 'Brown rice protein']),
    ('Ashwagandha KSM-66', 'herbal,wellness', 499, ['Stress relief', 'Better sleep'], ['Ashwagandha root extract']),
    ('Turmeric Curcumin with Piperine', 'herbal,immunity', 449, ['Joint support', 'Anti-inflammatory'], ['Curcumin', 'Black pepper extract']),
    ('Triphala Tablets', 'herbal,digestive-health', 249, ['Gentle detox', 'Digestive balance'], ['Amla', 'Haritaki', 'Bibhitaki']),
    ('Probiotic 30 Billion CFU', 'digestive-health,immunity', 699, ['Gut flora balance'], ['Lactobacillus', 'Bifidobacterium']),
    ('Omega-3 Fish Oil 1000mg', 'heart-health,wellness', 599, ['Heart health', 'Brain function'], ['EPA', 'DHA']),
    ('CoQ10 100mg', 'heart-health', 899, ['Cellular energy', 'Heart support'], ['Coenzyme Q10']),
    ('Apple Cider Vinegar Capsules', 'weight-management', 399, ['Metabolism support'], ['Apple cider vinegar powder']),
    ('Green Tea Extract', 'weight-management,herbal', 349, ['Fat metabolism', 'Antioxidants'], ['EGCG']),
    ('Creatine Monohydrate 250g', 'fitness', 799, ['Strength', 'Power output'], ['Creatine monohydrate']),
    ('Electrolyte Hydration Mix', 'fitness,wellness', 449, ['Rapid hydration'], ['Sodium', 'Potassium', 'Magnesium']),
]


def generate_products():
    """Create the supplement catalog."""
    print(f"Generating {len(PRODUCT_CATALOG)} products...")
    products = []

    for name, category, price, benefits, ingredients in PRODUCT_CATALOG:
        product = Product.objects.create(
            name=name,
            slug=slugify(name),
            category=category,
            price=Decimal(price),
            description=fake.paragraph(nb_sentences=3),
            stock_quantity=random.randint(20, 300),
            sku=f"GT-{slugify(name)[:20].upper()}",
            benefits=benefits,
            ingredients=ingredients,
            is_featured=random.random() < 0.3,
        )
        products.append(product)

    print(f"Created {len(products)} products")
    return products


def generate_users(count=20):
    """Create an admin plus customers. Every seeded account uses password 'greentap'."""
    print(f"Generating {count} users...")

    admin = register_user('9000000000', 'greentap', first_name='Store', last_name='Admin',
                          email='admin@greentap.example')
    admin.role = User.ROLE_ADMIN
    admin.save(update_fields=['role'])

    users = []
    for _ in range(count):
        mobile = f"{random.choice('6789')}{fake.unique.numerify('#########')}"
        users.append(register_user(
            mobile,
            'greentap',
            first_name=fake.first_name(),
            last_name=fake.last_name(),
            email=fake.unique.email(),
        ))

    print(f"Created {len(users)} customers and 1 admin ({admin.mobile})")
    return users


def generate_orders(users, products, count=40):
    """Place COD orders and walk some of them along the lifecycle."""
    print(f"Generating {count} orders...")
    workflow = OrderWorkflow(notifier=SilentNotifier())
    orders = []

    for _ in range(count):
        user = random.choice(users)
        picks = random.sample(products, random.randint(1, 3))
        order = workflow.create_order(
            user=user,
            items=[{'product_id': str(p.id), 'quantity': random.randint(1, 3)} for p in picks],
            delivery_address={
                'address': fake.street_address(),
                'city': fake.city(),
                'state': fake.state(),
                'pincode': str(random.randint(110001, 855126)),
            },
            customer_details={
                'name': user.full_name,
                'phone': user.mobile,
                'email': user.email or '',
            },
        )

        roll = random.random()
        if roll < 0.15:
            workflow.cancel_order(order, reason='Changed my mind')
        elif roll < 0.6:
            # marks shipped without booking a real courier
            Delivery.objects.create(
                order=order,
                tracking_id=f"AWB{fake.unique.numerify('##########')}",
                courier_name=random.choice(['Delhivery', 'Blue Dart', 'Ekart', 'XpressBees']),
                status='shipped',
            )
            workflow.update_status(order, 'shipped')
            if roll < 0.4:
                workflow.update_status(order, 'delivered')
        orders.append(order)

    print(f"Created {len(orders)} orders")
    return orders


def clear_all_data():
    """Clear all existing data."""
    print("Clearing existing data...")

    TrackingEvent.objects.all().delete()
    Delivery.objects.all().delete()
    Payment.objects.all().delete()
    OrderItem.objects.all().delete()
    Order.objects.all().delete()
    Product.objects.all().delete()
    User.objects.all().delete()

    print("All data cleared")


def main():
    """Main function to generate all data."""
    print("\n" + "="*60)
    print("GreenTap Demo Data Generator")
    print("="*60 + "\n")

    clear_all_data()

    products = generate_products()
    users = generate_users(20)
    orders = generate_orders(users, products, 40)

    print("\n" + "="*60)
    print("Data Generation Complete!")
    print("="*60)
    print(f"\nSummary:")
    print(f"  - Products: {len(products)}")
    print(f"  - Customers: {len(users)}")
    print(f"  - Orders: {len(orders)}")
    print()


if __name__ == '__main__':
    main()
