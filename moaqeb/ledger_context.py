"""
سياق العمليات (المكتب / الدور / المنفذ)
==========================================

كل عملية على الدفتر تستقبل LedgerContext يحدد:
- office_id: المكتب المالك للبيانات (None = وضع الزائر)
- guest_key: معرف جهاز الزائر، بيانات كل جهاز منفصلة
- role: الدور الفعلي بعد التحقق من انتهاء الاشتراك
- actor: الاسم المسجل في created_by

بهذا يعمل وضع الزائر ووضع المستخدم المسجل عبر نفس المسار.
"""

from datetime import datetime

from sqlalchemy import and_

from moaqeb.membership import effective_role


class LedgerContext:
    """نطاق البيانات لمكتب واحد أو جهاز زائر واحد"""

    def __init__(self, office_id=None, role='visitor', actor='زائر', user=None, guest_key=None):
        self.office_id = office_id
        self.guest_key = guest_key if office_id is None else None
        self.role = role
        self.actor = actor
        self.user = user

    @classmethod
    def guest(cls, guest_key):
        return cls(office_id=None, role='visitor', actor='زائر', user=None, guest_key=guest_key)

    @classmethod
    def for_user(cls, user, now=None, guest_key=None):
        if user is None:
            return cls.guest(guest_key)
        now = now or datetime.utcnow()
        return cls(
            office_id=user.office_id,
            role=effective_role(user, now),
            actor=user.office_name,
            user=user,
        )

    @property
    def is_guest(self):
        return self.office_id is None

    @property
    def feed_key(self):
        """مفتاح قناة التغييرات للمكتب أو لجهاز الزائر"""
        if self.office_id is None:
            return f'guest:{self.guest_key}'
        return self.office_id

    def owner_fields(self):
        """أعمدة الملكية لأي صف جديد"""
        return {'office_id': self.office_id, 'guest_key': self.guest_key}

    def scope(self, model):
        """شرط المكتب على جدول"""
        if self.office_id is None:
            return and_(model.office_id.is_(None), model.guest_key == self.guest_key)
        return model.office_id == self.office_id

    def query(self, model):
        """استعلام مقيد بمكتب السياق"""
        return model.query.filter(self.scope(model))

    def __repr__(self):
        if self.office_id is None:
            return f'<LedgerContext guest={self.guest_key}>'
        return f'<LedgerContext office={self.office_id} role={self.role}>'
