from .user import UserProfile, ProfileUpdate, UserRole
from .expense import DashboardStats, Expense, ExpenseCategory, ExpenseForm, ExpenseStatus, ExpenseUpdate
from .message import BatchResult, Message, MessageForm
from .notification import Notification, NotificationCreate, NotificationPriority
from .file import FileUpload, StorageStats, UploadedFile, UploadReport
