from core.platform import Platform
from services.auth_service import AuthService
from services.expense_service import ExpenseService
from services.file_service import FileService
from services.message_service import MessageService
from services.notification_service import NotificationService


class Services:
    """Every domain service, built once over a single platform."""

    def __init__(self, platform: Platform) -> None:
        self.platform = platform
        self.auth = AuthService(platform)
        self.files = FileService(platform)
        self.expenses = ExpenseService(platform, files=self.files)
        self.messages = MessageService(platform)
        self.notifications = NotificationService(platform)
