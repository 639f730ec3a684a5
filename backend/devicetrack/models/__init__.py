from .tenancy import Warehouse, Store
from .auth import User
from .inventory import Device, DeviceLog, QcCheck
from .documents import Transfer, TransferItem, DemandRequest, DocumentSequence
from .sales import Sale, EmiDetail, EmiPayment

__all__ = [
    'Warehouse', 'Store',
    'User',
    'Device', 'DeviceLog', 'QcCheck',
    'Transfer', 'TransferItem', 'DemandRequest', 'DocumentSequence',
    'Sale', 'EmiDetail', 'EmiPayment',
]
