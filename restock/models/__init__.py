from restock.models.tenant import Tenant
from restock.models.user import User
from restock.models.section import Section, SectionAssignment
from restock.models.supplier import Supplier
from restock.models.product import Product
from restock.models.order import Order
from restock.models.sync_status import SyncStatus
