# إعدادات النظام
import os


def _env_bool(name: str, default: bool = False) -> bool:
	value = os.getenv(name)
	if value is None:
		return default
	return str(value).strip().lower() in ('1', 'true', 'yes', 'y', 'on')


def _env_int(name: str, default: int) -> int:
	value = os.getenv(name)
	if value is None:
		return default
	try:
		return int(str(value).strip())
	except (TypeError, ValueError):
		return default


# ╔════════════════════════════════════════════════════════════╗
# ║  قاعدة البيانات                                            ║
# ╚════════════════════════════════════════════════════════════╝
# بدون DATABASE_URL يعمل التطبيق على ملف SQLite محلي (وضع الزائر / الجهاز).

DATABASE_URL = os.getenv(
	'DATABASE_URL',
	f"sqlite:///{os.path.join(os.path.dirname(os.path.abspath(__file__)), 'moaqeb.db')}",
)


# ╔════════════════════════════════════════════════════════════╗
# ║  JWT Authentication Settings                               ║
# ╚════════════════════════════════════════════════════════════╝
#
# ملاحظة: لا نخزن الأسرار داخل الكود. استخدم متغيرات البيئة:
# - JWT_SECRET_KEY
# - JWT_ALGORITHM (اختياري)
# - JWT_ACCESS_TOKEN_EXP_MINUTES (اختياري)

JWT_SECRET_KEY = os.getenv('JWT_SECRET_KEY', '').strip()
JWT_ALGORITHM = os.getenv('JWT_ALGORITHM', 'HS256').strip() or 'HS256'
JWT_ACCESS_TOKEN_EXP_MINUTES = _env_int('JWT_ACCESS_TOKEN_EXP_MINUTES', default=60 * 24)

# في بيئات التطوير فقط (عند عدم تعيين JWT_SECRET_KEY) نستخدم fallback.
JWT_DEV_FALLBACK_SECRET = os.getenv('JWT_DEV_FALLBACK_SECRET', 'moaqeb-dev-secret')

# الزائر بدون تسجيل يُعرف بمعرف جهازه، وبياناته لا تظهر لجهاز آخر
GUEST_DEVICE_HEADER = 'X-Device-Id'


# ╔════════════════════════════════════════════════════════════╗
# ║  المجدولات                                                ║
# ╚════════════════════════════════════════════════════════════╝

ENABLE_SCHEDULERS = _env_bool('ENABLE_SCHEDULERS', default=False)
SALARY_SCHEDULER_TIME = os.getenv('SALARY_SCHEDULER_TIME', '06:00').strip() or '06:00'


# ╔════════════════════════════════════════════════════════════╗
# ║  البنوك والخزينة                                          ║
# ╚════════════════════════════════════════════════════════════╝

DEFAULT_BANKS = [
	{'name': 'الراجحي', 'account_number': 'SA0000000000000000000000'},
	{'name': 'الأهلي', 'account_number': 'SA0000000000000000000000'},
	{'name': 'الإنماء', 'account_number': 'SA0000000000000000000000'},
	{'name': 'البلاد', 'account_number': 'SA0000000000000000000000'},
	{'name': 'بنك stc', 'account_number': '0500000000'},
	{'name': 'الرياض', 'account_number': 'SA0000000000000000000000'},
	{'name': 'الجزيرة', 'account_number': 'SA0000000000000000000000'},
	{'name': 'ساب', 'account_number': 'SA0000000000000000000000'},
	{'name': 'نقداً كاش', 'account_number': '-'},
	{'name': 'بنك آخر', 'account_number': '-'},
]


# ╔════════════════════════════════════════════════════════════╗
# ║  المعاملات                                                ║
# ╚════════════════════════════════════════════════════════════╝

SELF_HANDLED_AGENT = 'إنجاز بنفسي'
GENERAL_CLIENT_NAME = 'عميل عام'
SERIAL_NO_WIDTH = 4


# ╔════════════════════════════════════════════════════════════╗
# ║  العضويات والحدود                                         ║
# ╚════════════════════════════════════════════════════════════╝

ROLES = ('visitor', 'member', 'golden', 'employee')
LIMIT_KINDS = ('transactions', 'clients', 'agents', 'expenses')

DEFAULT_LIMITS = {
	'visitor': {'transactions': 5, 'clients': 3, 'agents': 2, 'expenses': 5},
	'member': {'transactions': 20, 'clients': 10, 'agents': 5, 'expenses': 20},
	'golden': {'transactions': 10000, 'clients': 10000, 'agents': 10000, 'expenses': 10000},
}

DEFAULT_FEATURE_PERMISSIONS = {
	'backup': ['visitor', 'member', 'golden', 'employee'],
	'employeeLogin': ['visitor', 'member', 'golden', 'employee'],
	'whatsapp': ['visitor', 'member', 'golden', 'employee'],
	'print': ['visitor', 'member', 'golden', 'employee'],
	'transfer': ['golden', 'employee'],
	'deleteExpense': ['golden', 'employee'],
	'achieversNumbers': ['golden', 'employee'],
	'lessons': ['golden', 'employee'],
	'monthStats': ['golden', 'employee'],
}

# مدة الاشتراك الذهبي بالأيام
SUBSCRIPTION_DURATIONS = {'شهر': 30, 'سنة': 365}


# ╔════════════════════════════════════════════════════════════╗
# ║  الرواتب                                                  ║
# ╚════════════════════════════════════════════════════════════╝

SALARY_CYCLE_DAYS = 30
SALARY_TYPES = ('monthly', 'commission', 'both')
MAX_EMPLOYEES_PER_OFFICE = 2
