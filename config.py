import os
from decimal import Decimal
from dotenv import load_dotenv

# Загрузка .env
load_dotenv()

# База данных
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///compensation.db")
DATABASE_ECHO = os.getenv("DATABASE_ECHO", "0") == "1"

# Логирование
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Корень дерева и бизнес-коды участников
BUSINESS_CODE_PREFIX = os.getenv("BUSINESS_CODE_PREFIX", "CROWN")
BUSINESS_CODE_DIGITS = int(os.getenv("BUSINESS_CODE_DIGITS", "6"))
ROOT_BUSINESS_CODE = os.getenv(
    "ROOT_BUSINESS_CODE",
    f"{BUSINESS_CODE_PREFIX}-{'0' * BUSINESS_CODE_DIGITS}"
)

# Кошельки
DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "USD")

# Пакет по умолчанию (используется, когда у узла нет активной инвестиции)
DEFAULT_PACKAGE_NAME = os.getenv("DEFAULT_PACKAGE_NAME", "Default")
DEFAULT_BINARY_PCT = Decimal(os.getenv("DEFAULT_BINARY_PCT", "10"))
DEFAULT_CAPPING_LIMIT = Decimal(os.getenv("DEFAULT_CAPPING_LIMIT", "1000"))
DEFAULT_REFERRAL_PCT = Decimal(os.getenv("DEFAULT_REFERRAL_PCT", "7"))
DEFAULT_TOTAL_OUTPUT_PCT = Decimal(os.getenv("DEFAULT_TOTAL_OUTPUT_PCT", "225"))
DEFAULT_RENEWABLE_PCT = Decimal(os.getenv("DEFAULT_RENEWABLE_PCT", "50"))
DEFAULT_DURATION_DAYS = int(os.getenv("DEFAULT_DURATION_DAYS", "150"))
DEFAULT_MIN_AMOUNT = Decimal(os.getenv("DEFAULT_MIN_AMOUNT", "0"))
DEFAULT_MAX_AMOUNT = Decimal(os.getenv("DEFAULT_MAX_AMOUNT", "0"))  # 0 = без ограничения

# Вывод средств
WITHDRAWAL_CHARGE_PCT = Decimal(os.getenv("WITHDRAWAL_CHARGE_PCT", "5"))

# Оптимистичные блокировки: сколько раз повторять запись при конфликте версий
MAX_WRITE_RETRIES = int(os.getenv("MAX_WRITE_RETRIES", "3"))

# Размещение: предельная глубина поиска свободного места под спонсором
MAX_PLACEMENT_DEPTH = int(os.getenv("MAX_PLACEMENT_DEPTH", "10000"))
