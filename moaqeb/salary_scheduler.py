"""
مجدول الرواتب والاشتراكات
===========================
يتحقق يومياً من:
- الموظفين الذين حل موعد راتبهم الشهري
- الاشتراكات الذهبية المنتهية
الصرف نفسه يتم يدوياً من المكتب (اختيار البنك)، المجدول ينبه فقط.
"""

import logging
import time
from datetime import date, datetime
from threading import Thread

import schedule

from moaqeb import payroll, salary_cycle
from moaqeb.config import SALARY_SCHEDULER_TIME
from moaqeb.membership import expired_golden_users

LOGGER = logging.getLogger(__name__)


class SalaryScheduler:
    """مجدول تنبيهات الرواتب"""

    def __init__(self, app, at_time=SALARY_SCHEDULER_TIME):
        self.app = app
        self.at_time = at_time
        self.is_running = False
        self._thread = None

    def check_due_salaries(self, today=None):
        """تنبيه بالرواتب المستحقة - يعيد قائمة (employee_id, next_cycle_start)"""
        with self.app.app_context():
            try:
                today = today or date.today()
                due = payroll.list_due_salaries(today)
                result = [(c.employee_id, salary_cycle.next_cycle_start(c.start_date)) for c in due]
                if result:
                    print(f"[SalaryScheduler] ⚠️ يوجد {len(result)} راتب مستحق للصرف")
                    for employee_id, next_start in result:
                        LOGGER.info('Salary due for employee %s since %s', employee_id, next_start)
                else:
                    print("[SalaryScheduler] لا توجد رواتب مستحقة اليوم")
                return result
            except Exception as e:
                print(f"[SalaryScheduler] ❌ خطأ في التحقق من الرواتب المستحقة: {e}")
                LOGGER.exception('Salary check failed')
                return []

    def check_expired_subscriptions(self, now=None):
        """المكاتب الذهبية المنتهية (تُعامل كعضو حتى التجديد)"""
        with self.app.app_context():
            try:
                expired = expired_golden_users(now or datetime.utcnow())
                if expired:
                    print(f"[SalaryScheduler] ⚠️ {len(expired)} اشتراك ذهبي منتهي")
                return [u.id for u in expired]
            except Exception as e:
                print(f"[SalaryScheduler] ❌ خطأ في التحقق من الاشتراكات: {e}")
                LOGGER.exception('Subscription check failed')
                return []

    def run_daily(self):
        self.check_due_salaries()
        self.check_expired_subscriptions()

    def setup_schedule(self):
        """إعداد جدول المهام"""
        schedule.every().day.at(self.at_time).do(self.run_daily).tag('salary')
        print(f"[SalaryScheduler] ✓ فحص الرواتب والاشتراكات يومياً الساعة {self.at_time}")

    def start(self):
        """بدء المجدول في خيط منفصل"""
        if self.is_running:
            print("[SalaryScheduler] المجدول يعمل بالفعل")
            return

        self.setup_schedule()
        self.is_running = True

        def run_scheduler():
            while self.is_running:
                schedule.run_pending()
                time.sleep(60)

        self._thread = Thread(target=run_scheduler, daemon=True)
        self._thread.start()
        print("[SalaryScheduler] 🚀 بدأ مجدول الرواتب")

    def stop(self):
        """إيقاف المجدول"""
        self.is_running = False
        schedule.clear('salary')
        print("[SalaryScheduler] ⏸️ توقف مجدول الرواتب")


# متغير عام للمجدول
_scheduler_instance = None


def get_salary_scheduler(app):
    """الحصول على نسخة المجدول الوحيدة"""
    global _scheduler_instance
    if _scheduler_instance is None:
        _scheduler_instance = SalaryScheduler(app)
    return _scheduler_instance


def start_salary_scheduler(app):
    scheduler = get_salary_scheduler(app)
    scheduler.start()
    return scheduler
