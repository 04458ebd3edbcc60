import logging

from .models import Customer
from .transformer import CustomerIdentity

logger = logging.getLogger(__name__)

GUEST_NAME = 'Guest'
IDENTITY_FIELDS = ('external_id', 'email', 'phone', 'first_name', 'last_name')


def guest_customer(tenant_id: str) -> Customer:
    guest = Customer.objects.filter(tenant_id=tenant_id, is_guest=True).order_by('id').first()
    if guest is None:
        guest = Customer.objects.create(tenant_id=tenant_id, is_guest=True, first_name=GUEST_NAME)
        logger.info("Created guest customer for tenant %s.", tenant_id)
    return guest


def match_or_create_customer(tenant_id: str, identity: CustomerIdentity) -> tuple[Customer, bool]:
    """
    Find the customer for an identity: by external id, then email, then phone.

    Unknown identities create a new customer; identities without any key
    share the tenant's guest customer. Known customers get missing contact
    fields filled in, never overwritten. Returns (customer, created).
    """
    if identity.is_anonymous:
        return guest_customer(tenant_id), False

    candidates = Customer.objects.filter(tenant_id=tenant_id, is_guest=False).order_by('id')
    customer = None
    if identity.external_id:
        customer = candidates.filter(external_id=identity.external_id).first()
    if customer is None and identity.email:
        customer = candidates.filter(email__iexact=identity.email).first()
    if customer is None and identity.phone:
        customer = candidates.filter(phone=identity.phone).first()

    if customer is None:
        customer = Customer.objects.create(
            tenant_id=tenant_id, **{attr: getattr(identity, attr) for attr in IDENTITY_FIELDS},
        )
        return customer, True

    changed = []
    for attr in IDENTITY_FIELDS:
        incoming = getattr(identity, attr)
        if incoming and not getattr(customer, attr):
            setattr(customer, attr, incoming)
            changed.append(attr)
    if changed:
        customer.save(update_fields=changed)
    return customer, False


def resolve_customer(tenant_id: str, identity: CustomerIdentity) -> Customer:
    customer, _ = match_or_create_customer(tenant_id, identity)
    return customer
