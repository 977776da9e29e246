"""
Factory Boy factories for merchant test data.

Usage:
    from merchants.tests.factories import MerchantFactory

    merchant = MerchantFactory()
    bare = MerchantFactory(contact_email="", address="")
"""

import datetime

import factory

from merchants.models import BusinessType, Merchant


class MerchantFactory(factory.django.DjangoModelFactory):
    """
    Factory for creating Merchant instances with a complete profile.

    Override individual fields with "" to simulate an incomplete profile.
    """

    class Meta:
        model = Merchant

    name = factory.Sequence(lambda n: f"Agency {n}")
    legal_name = factory.LazyAttribute(lambda o: f"{o.name} LLC")
    business_type = BusinessType.COMPANY
    country = "US"
    contact_email = factory.Sequence(lambda n: f"agency{n}@example.com")
    phone = "+14155550100"
    website = "https://agency.example.com"
    address = "1 Market St, San Francisco, CA, 94105"
    tax_id = "000000000"
    representative_name = "Ada Lovelace"
    representative_email = "ada@example.com"
    representative_dob = datetime.date(1985, 12, 10)
