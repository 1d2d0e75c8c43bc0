"""Check existing subscription plans"""
from dotenv import load_dotenv
load_dotenv()

from database.database import SessionLocal
from database.models import SubscriptionPlan

db = SessionLocal()

plans = db.query(SubscriptionPlan).order_by(SubscriptionPlan.price).all()
print('💳 ALL PLANS:', len(plans))
for p in plans:
    print(f'  - {p.id}: {p.name} ({p.duration_hours}h, ₹{p.price}, active={p.is_active})')

active = [p for p in plans if p.is_active]
print('\n✅ ACTIVE PLANS:', len(active))
for p in active:
    print(f'  - {p.id}: {p.name}')

db.close()
