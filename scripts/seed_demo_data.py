"""
Seed script: Populate a demo distributor tenant with realistic data.

What it creates:
- Tenant + admin user (ADMIN) and a cashier (VENDEDOR) with credentials.
- Brands, models, providers and categories through the bulk importer.
- Products: N (default 300) with unique SKUs, prices and opening stock
  recorded as CARGA_MASIVA movements.
- Customers (~40), some with current account and special discount.
- One open cash session and a mix of sales (EFECTIVO / TARJETA /
  CUENTA_CORRIENTE) plus a few account payments.

Run inside the API container to use 'postgres' host and project PYTHONPATH:
    docker compose exec api python scripts/seed_demo_data.py \
        --tenant-name "Repuestos Demo" \
        --email admin@repuestosdemo.com \
        --password RepDemo!2025 \
        --products 300 --sales 200

Note: This is intended for development environments only.
"""

# Add project root (/code) to sys.path so `app.*` imports work even if CWD changes
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import argparse
import random
from decimal import Decimal

from app.database.database import SessionLocal, Base, engine
from app.common.exceptions import DomainError
from app.modules.auth.models import Tenant, User
from app.modules.auth.permissions import LEGACY_ROLE_PERMISSIONS
from app.modules.auth.schemas import AuthContext
from app.modules.auth.utils import hash_password
from app.modules.cash.service import CashSessionService
from app.modules.customers.schemas import CustomerCreate
from app.modules.customers.service import CustomerService
from app.modules.products.importer import BulkImportService
from app.modules.products.models import Product
from app.modules.products.schemas import BulkImportRow
from app.modules.sales.models import PaymentMethod
from app.modules.sales.schemas import SaleCreate, SaleItemCreate
from app.modules.sales.service import SaleService
import app.modules.sales.models  # noqa: F401

BRANDS = {
    "Ford": ["Focus", "Fiesta", "Ranger"],
    "Chevrolet": ["Corsa", "Onix", "S10"],
    "Volkswagen": ["Gol", "Amarok", "Vento"],
    "Fiat": ["Palio", "Cronos", "Toro"],
    "Renault": ["Clio", "Sandero", "Kangoo"],
}
PARTS = ["Filtro de aceite", "Filtro de aire", "Pastillas de freno", "Amortiguador", "Bujía",
         "Correa de distribución", "Bomba de agua", "Embrague", "Radiador", "Disco de freno"]
CATEGORIES = ["Filtros", "Frenos", "Suspensión", "Encendido", "Motor", "Refrigeración", "Transmisión"]
PROVIDERS = ["Distribuidora Norte", "Autopartes del Sur", "Importadora Central"]


def pick(seq):
    return random.choice(seq)


def create_tenant(db, name: str):
    existing = db.query(Tenant).filter(Tenant.name == name).first()
    if existing:
        return existing
    tenant = Tenant(name=name, is_active=True)
    db.add(tenant)
    db.commit()
    db.refresh(tenant)
    return tenant


def create_user(db, tenant_id, email: str, password: str, name: str, legacy_role: str):
    user = db.query(User).filter(User.email == email).first()
    if user:
        return user
    user = User(
        tenant_id=tenant_id,
        email=email,
        name=name,
        password=hash_password(password),
        legacy_role=legacy_role,
        is_active=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def build_product_rows(count: int):
    rows = []
    brand_names = list(BRANDS.keys())
    for i in range(count):
        brand = pick(brand_names)
        model = pick(BRANDS[brand])
        part = pick(PARTS)
        cost = Decimal(random.randint(2000, 90000)) / 100
        rows.append(BulkImportRow(
            sku=f"REP-{i + 1:05d}",
            name=f"{part} {brand} {model}",
            brand=brand,
            model=model,
            provider=pick(PROVIDERS),
            category=pick(CATEGORIES),
            factory_code=f"FC{random.randint(100000, 999999)}",
            purchase_price=str(cost),
            sale_price=str((cost * Decimal("1.45")).quantize(Decimal("0.01"))),
            stock=random.randint(0, 60),
            min_stock=random.choice([2, 5, 10]),
            year=random.randint(2008, 2024),
        ))
    return rows


def create_customers(db, tenant_id, count: int = 40):
    service = CustomerService(db)
    customers = []
    for i in range(count):
        with_account = random.random() < 0.4
        data = CustomerCreate(
            name=f"Taller {i + 1:03d}",
            tax_id=f"30-{random.randint(10000000, 99999999)}-{random.randint(0, 9)}",
            phone=f"11{random.randint(40000000, 69999999)}",
            tax_condition=pick(["CONSUMIDOR_FINAL", "RESPONSABLE_INSCRIPTO", "MONOTRIBUTO"]),
            has_current_account=with_account,
            credit_limit=Decimal(random.choice([200000, 500000, 1000000])) if with_account else None,
            special_discount=Decimal(random.choice([0, 0, 5, 10])),
        )
        customers.append(service.create_customer(tenant_id, data))
    return customers


def create_sales(db, auth: AuthContext, products, customers, sales_count: int):
    service = SaleService(db)
    account_customers = [c for c in customers if c.has_current_account]
    created = 0
    for i in range(sales_count):
        items = [
            SaleItemCreate(product_id=p.id, quantity=random.randint(1, 3))
            for p in random.sample(products, k=random.randint(1, 4))
        ]
        roll = random.random()
        if roll < 0.2 and account_customers:
            method, customer = PaymentMethod.ACCOUNT, pick(account_customers)
        elif roll < 0.4:
            method, customer = PaymentMethod.CARD, pick(customers)
        else:
            method, customer = PaymentMethod.CASH, None
        try:
            service.register_sale(auth, SaleCreate(
                items=items,
                customer_id=customer.id if customer else None,
                payment_method=method,
                idempotency_key=f"seed-{i:05d}",
            ))
            created += 1
        except DomainError:
            continue
        if created % 50 == 0:
            print(f"  Sales created: {created}")
    return created


def main():
    parser = argparse.ArgumentParser(description="Seed distributor demo data")
    parser.add_argument("--tenant-name", default="Repuestos Demo")
    parser.add_argument("--email", default="admin@repuestosdemo.com")
    parser.add_argument("--password", default="RepDemo!2025")
    parser.add_argument("--products", type=int, default=300)
    parser.add_argument("--sales", type=int, default=200)
    args = parser.parse_args()

    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        tenant = create_tenant(db, args.tenant_name)
        admin = create_user(db, tenant.id, args.email, args.password, "Admin Demo", "ADMIN")
        create_user(db, tenant.id, f"caja.{args.email}", args.password, "Cajero Demo", "VENDEDOR")

        print("Importing products...")
        result = BulkImportService(db).import_rows(tenant.id, build_product_rows(args.products), admin.id)
        print(f"Products created: {result.created}, updated: {result.updated}, errors: {result.errors}")

        print("Creating customers...")
        customers = create_customers(db, tenant.id)
        print(f"Customers: {len(customers)}")

        cash = CashSessionService(db)
        if not cash.get_current_session(tenant.id):
            cash.open_session(tenant.id, Decimal("20000.00"), admin.id)

        auth = AuthContext(
            user_id=admin.id,
            tenant_id=tenant.id,
            user_role=admin.legacy_role,
            permissions=sorted(LEGACY_ROLE_PERMISSIONS["ADMIN"]),
        )
        products = db.query(Product).filter(Product.tenant_id == tenant.id, Product.stock > 0).all()

        print("Registering sales...")
        sales_created = create_sales(db, auth, products, customers, args.sales)
        print(f"Sales created: {sales_created}")

        print("Registering account payments...")
        service = CustomerService(db)
        payments = 0
        for customer in customers:
            db.refresh(customer)
            if customer.balance and customer.balance > 0 and random.random() < 0.5:
                amount = (Decimal(customer.balance) / 2).quantize(Decimal("0.01"))
                service.register_payment(tenant.id, customer.id, amount, pick(["EFECTIVO", "TRANSFERENCIA"]),
                                         user_id=admin.id)
                payments += 1
        print(f"Payments registered: {payments}")

        print("\nSeed completed.")
        print("Login credentials:")
        print(f"  Email:    {args.email}")
        print(f"  Password: {args.password}")
        print("Tenant:")
        print(f"  Name:     {tenant.name}")
        print(f"  Tenant ID: {tenant.id}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
