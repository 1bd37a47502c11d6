# SQLAlchemy models for BankAccount, Transaction, Agent, Client, Expense, payroll and membership
import json
from datetime import datetime

from flask_sqlalchemy import SQLAlchemy
from werkzeug.security import check_password_hash, generate_password_hash

from moaqeb.config import DEFAULT_BANKS, DEFAULT_FEATURE_PERMISSIONS, DEFAULT_LIMITS

db = SQLAlchemy()


TRANSACTION_STATUSES = ('active', 'completed', 'cancelled')
EXPENSE_KINDS = ('general', 'salary', 'commission', 'termination')


def _iso(value):
    return value.isoformat() if value else None


class User(db.Model):
    """حسابات المكاتب والموظفين التابعين لها"""
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    office_name = db.Column(db.String(150), nullable=False)
    phone = db.Column(db.String(30), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(20), nullable=False, default='member')  # member, golden, employee
    parent_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)  # المكتب المالك للموظف
    subscription_expiry = db.Column(db.DateTime, nullable=True)
    affiliate_balance = db.Column(db.Float, default=0.0, nullable=False)
    referred_by = db.Column(db.String(30), nullable=True)
    is_admin = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    parent = db.relationship('User', remote_side=[id], backref=db.backref('employees', lazy='dynamic'))

    def set_password(self, password: str):
        self.password_hash = generate_password_hash(password, method='pbkdf2:sha256')

    def check_password(self, password: str) -> bool:
        if not self.password_hash:
            return False
        return check_password_hash(self.password_hash, password)

    @property
    def office_id(self):
        """المعرف الذي تُحفظ تحته بيانات المكتب (الموظف يعمل ضمن مكتب المالك)"""
        if self.role == 'employee' and self.parent_id:
            return self.parent_id
        return self.id

    def to_dict(self):
        return {
            'id': self.id,
            'office_name': self.office_name,
            'phone': self.phone,
            'role': self.role,
            'parent_id': self.parent_id,
            'subscription_expiry': _iso(self.subscription_expiry),
            'affiliate_balance': round(self.affiliate_balance or 0.0, 2),
            'referred_by': self.referred_by,
            'created_at': _iso(self.created_at),
        }

    def __repr__(self):
        return f'<User {self.office_name} ({self.role})>'


class BankAccount(db.Model):
    """
    حساب بنكي / خزينة للمكتب
    balance: الرصيد الفعلي القابل للصرف
    pending_balance: الرصيد المعلق (مستحقات مرتجعات العملاء وأجور المعقبين)
    """
    __tablename__ = 'bank_account'

    id = db.Column(db.Integer, primary_key=True)
    office_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True, index=True)
    guest_key = db.Column(db.String(64), nullable=True, index=True)  # جهاز الزائر
    name = db.Column(db.String(100), nullable=False)
    account_number = db.Column(db.String(50), nullable=True)
    balance = db.Column(db.Float, default=0.0, nullable=False)
    pending_balance = db.Column(db.Float, default=0.0, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint('office_id', 'name', name='_office_bank_name_uc'),
        db.UniqueConstraint('guest_key', 'name', name='_guest_bank_name_uc'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'account_number': self.account_number,
            'balance': round(self.balance or 0.0, 2),
            'pending_balance': round(self.pending_balance or 0.0, 2),
            'updated_at': _iso(self.updated_at),
        }

    def __repr__(self):
        return f'<BankAccount {self.name}: {self.balance}>'


class Agent(db.Model):
    """المعقبين المنفذين للمعاملات"""
    __tablename__ = 'agent'

    id = db.Column(db.Integer, primary_key=True)
    office_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True, index=True)
    guest_key = db.Column(db.String(64), nullable=True, index=True)  # جهاز الزائر
    name = db.Column(db.String(150), nullable=False)
    phone = db.Column(db.String(20), nullable=True)
    whatsapp = db.Column(db.String(20), nullable=True)
    # ربط المعقب بموظف داخلي لاحتساب العمولة
    employee_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    created_by = db.Column(db.String(150), nullable=True)

    employee = db.relationship('User', foreign_keys=[employee_id])

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'phone': self.phone,
            'whatsapp': self.whatsapp,
            'employee_id': self.employee_id,
            'created_at': _iso(self.created_at),
            'created_by': self.created_by,
        }


class Client(db.Model):
    """العملاء"""
    __tablename__ = 'client'

    id = db.Column(db.Integer, primary_key=True)
    office_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True, index=True)
    guest_key = db.Column(db.String(64), nullable=True, index=True)  # جهاز الزائر
    name = db.Column(db.String(150), nullable=False)
    phone = db.Column(db.String(20), nullable=True)
    whatsapp = db.Column(db.String(20), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    created_by = db.Column(db.String(150), nullable=True)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'phone': self.phone,
            'whatsapp': self.whatsapp,
            'created_at': _iso(self.created_at),
            'created_by': self.created_by,
        }


class Transaction(db.Model):
    """
    معاملة عميل
    =========
    سعر العميل يُضاف لرصيد البنك عند الإنشاء، وسعر المعقب التزام يُسدد عند التسوية.
    الحالة: active → completed | cancelled
    """
    __tablename__ = 'transaction'

    id = db.Column(db.Integer, primary_key=True)
    office_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True, index=True)
    guest_key = db.Column(db.String(64), nullable=True, index=True)  # جهاز الزائر
    serial_no = db.Column(db.String(20), nullable=False)
    type = db.Column(db.String(150), nullable=False)

    client_id = db.Column(db.Integer, db.ForeignKey('client.id'), nullable=True, index=True)
    client_name = db.Column(db.String(150), nullable=False)
    agent_id = db.Column(db.Integer, db.ForeignKey('agent.id'), nullable=True, index=True)
    agent_name = db.Column(db.String(150), nullable=False)

    client_price = db.Column(db.Float, default=0.0, nullable=False)
    agent_price = db.Column(db.Float, default=0.0, nullable=False)
    payment_method = db.Column(db.String(100), nullable=False)  # اسم البنك
    duration = db.Column(db.Integer, default=0, nullable=False)  # بالأيام

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    target_date = db.Column(db.DateTime, nullable=False)
    status = db.Column(db.String(20), default='active', nullable=False, index=True)
    agent_paid = db.Column(db.Boolean, default=False, nullable=False)
    client_refunded = db.Column(db.Boolean, default=False, nullable=False)
    created_by = db.Column(db.String(150), nullable=True)

    # صفوف المكاتب guest_key فيها NULL وصفوف الزوار office_id فيها NULL
    __table_args__ = (
        db.UniqueConstraint('office_id', 'serial_no', name='_office_serial_uc'),
        db.UniqueConstraint('guest_key', 'serial_no', name='_guest_serial_uc'),
    )

    agent = db.relationship('Agent', backref=db.backref('transactions', lazy='dynamic'))
    client = db.relationship('Client', backref=db.backref('transactions', lazy='dynamic'))

    @property
    def profit(self):
        return max(0.0, (self.client_price or 0.0) - (self.agent_price or 0.0))

    def to_dict(self):
        return {
            'id': self.id,
            'serial_no': self.serial_no,
            'type': self.type,
            'client_id': self.client_id,
            'client_name': self.client_name,
            'agent_id': self.agent_id,
            'agent_name': self.agent_name,
            'client_price': round(self.client_price or 0.0, 2),
            'agent_price': round(self.agent_price or 0.0, 2),
            'payment_method': self.payment_method,
            'duration': self.duration,
            'created_at': _iso(self.created_at),
            'target_date': _iso(self.target_date),
            'status': self.status,
            'agent_paid': self.agent_paid,
            'client_refunded': self.client_refunded,
            'created_by': self.created_by,
        }

    def __repr__(self):
        return f'<Transaction #{self.serial_no} {self.status}>'


class Expense(db.Model):
    """المصروفات - تشمل صرف الرواتب والعمولات ومستحقات نهاية الخدمة"""
    __tablename__ = 'expense'

    id = db.Column(db.Integer, primary_key=True)
    office_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True, index=True)
    guest_key = db.Column(db.String(64), nullable=True, index=True)  # جهاز الزائر
    title = db.Column(db.String(255), nullable=False)
    amount = db.Column(db.Float, nullable=False)
    bank = db.Column(db.String(100), nullable=False)
    date = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    created_by = db.Column(db.String(150), nullable=True)

    kind = db.Column(db.String(20), default='general', nullable=False)  # general, salary, commission, termination
    employee_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True, index=True)
    period_start = db.Column(db.Date, nullable=True)
    period_end = db.Column(db.Date, nullable=True)

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'amount': round(self.amount or 0.0, 2),
            'bank': self.bank,
            'date': _iso(self.date),
            'created_by': self.created_by,
            'kind': self.kind,
            'employee_id': self.employee_id,
            'period_start': _iso(self.period_start),
            'period_end': _iso(self.period_end),
        }


class AgentTransfer(db.Model):
    """إيصال تحويل مستحقات معقب (سجل إلحاقي فقط)"""
    __tablename__ = 'agent_transfer'

    id = db.Column(db.Integer, primary_key=True)
    office_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True, index=True)
    guest_key = db.Column(db.String(64), nullable=True, index=True)  # جهاز الزائر
    agent_id = db.Column(db.Integer, db.ForeignKey('agent.id', ondelete='SET NULL'), nullable=True)
    agent_name = db.Column(db.String(150), nullable=False)
    amount = db.Column(db.Float, nullable=False)
    bank = db.Column(db.String(100), nullable=False)
    date = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    transaction_count = db.Column(db.Integer, default=0, nullable=False)
    created_by = db.Column(db.String(150), nullable=True)

    def to_dict(self):
        return {
            'id': self.id,
            'agent_id': self.agent_id,
            'agent_name': self.agent_name,
            'amount': round(self.amount or 0.0, 2),
            'bank': self.bank,
            'date': _iso(self.date),
            'transaction_count': self.transaction_count,
            'created_by': self.created_by,
        }


class ClientRefund(db.Model):
    """إيصال استرجاع مبالغ معاملات ملغاة لعميل (سجل إلحاقي فقط)"""
    __tablename__ = 'client_refund'

    id = db.Column(db.Integer, primary_key=True)
    office_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True, index=True)
    guest_key = db.Column(db.String(64), nullable=True, index=True)  # جهاز الزائر
    client_id = db.Column(db.Integer, db.ForeignKey('client.id', ondelete='SET NULL'), nullable=True)
    client_name = db.Column(db.String(150), nullable=False)
    amount = db.Column(db.Float, nullable=False)
    bank = db.Column(db.String(100), nullable=False)
    date = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    transaction_count = db.Column(db.Integer, default=0, nullable=False)
    created_by = db.Column(db.String(150), nullable=True)

    def to_dict(self):
        return {
            'id': self.id,
            'client_id': self.client_id,
            'client_name': self.client_name,
            'amount': round(self.amount or 0.0, 2),
            'bank': self.bank,
            'date': _iso(self.date),
            'transaction_count': self.transaction_count,
            'created_by': self.created_by,
        }


class SalaryConfig(db.Model):
    """إعدادات راتب الموظف (شهري / عمولة / الاثنين)"""
    __tablename__ = 'salary_config'

    id = db.Column(db.Integer, primary_key=True)
    employee_id = db.Column(db.Integer, db.ForeignKey('users.id'), unique=True, nullable=False)
    start_date = db.Column(db.Date, nullable=False)
    salary_type = db.Column(db.String(20), nullable=False, default='monthly')  # monthly, commission, both
    rate = db.Column(db.Float, default=0.0, nullable=False)  # نسبة العمولة %
    amount = db.Column(db.Float, default=0.0, nullable=False)  # الراتب الشهري
    is_locked = db.Column(db.Boolean, default=False, nullable=False)
    is_stopped = db.Column(db.Boolean, default=False, nullable=False)
    stopped_at = db.Column(db.Date, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    employee = db.relationship('User', backref=db.backref('salary_config', uselist=False))

    @property
    def includes_monthly(self):
        return self.salary_type in ('monthly', 'both')

    @property
    def includes_commission(self):
        return self.salary_type in ('commission', 'both')

    def to_dict(self):
        return {
            'id': self.id,
            'employee_id': self.employee_id,
            'start_date': _iso(self.start_date),
            'salary_type': self.salary_type,
            'rate': self.rate,
            'amount': round(self.amount or 0.0, 2),
            'is_locked': self.is_locked,
            'is_stopped': self.is_stopped,
            'stopped_at': _iso(self.stopped_at),
        }


class AppSettings(db.Model):
    """
    الإعدادات العامة (صف واحد)
    القيم المخزنة تُدمج فوق القيم الافتراضية عند القراءة.
    """
    __tablename__ = 'app_settings'

    id = db.Column(db.Integer, primary_key=True)
    limits = db.Column(db.Text, nullable=True)
    feature_permissions = db.Column(db.Text, nullable=True)
    banks = db.Column(db.Text, nullable=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @staticmethod
    def _load(raw, default):
        if not raw:
            return default
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            return default

    def get_limits(self):
        stored = self._load(self.limits, {})
        merged = {}
        for tier, defaults in DEFAULT_LIMITS.items():
            merged[tier] = {**defaults, **(stored.get(tier) or {})}
        return merged

    def get_feature_permissions(self):
        stored = self._load(self.feature_permissions, {})
        return {**DEFAULT_FEATURE_PERMISSIONS, **stored}

    def get_banks(self):
        return self._load(self.banks, None) or [dict(b) for b in DEFAULT_BANKS]

    def to_dict(self):
        return {
            'limits': self.get_limits(),
            'feature_permissions': self.get_feature_permissions(),
            'banks': self.get_banks(),
        }
