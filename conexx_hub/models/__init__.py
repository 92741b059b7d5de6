from conexx_hub.models.plan import Plan
from conexx_hub.models.tenant import Tenant
from conexx_hub.models.user import User
from conexx_hub.models.order import Order
from conexx_hub.models.billing import AsaasCustomer, Payment, Subscription
from conexx_hub.models.weekly_fee import WeeklyFee
from conexx_hub.models.webhook_event import WebhookEvent
from conexx_hub.models.audit_log import AuditLog
