"""
قناة التغييرات اللحظية
========================

تُجمع التغييرات التي تمت عبر الجلسة (إضافة / تعديل / حذف) بعد كل flush،
وتُرسل للمشتركين فقط بعد نجاح الـ commit. عند rollback تُلغى.

التحديثات والحذف الجماعي (update / delete بدون ORM) تُسجل صراحة عبر record / record_many.

الحدث: {'table': ..., 'office_id': ..., 'event': INSERT|UPDATE|DELETE, 'id': ...}
office_id هو معرف المكتب، أو guest:<guest_key> لبيانات جهاز زائر.
"""

import logging
import threading
from collections import OrderedDict, defaultdict

from sqlalchemy import event
from sqlalchemy.orm import Session

LOGGER = logging.getLogger(__name__)

_INFO_KEY = 'moaqeb_changes'
ALL_TABLES = '*'

_subscribers = defaultdict(list)
_lock = threading.Lock()
_installed = False


def subscribe(table, office_id, callback):
    """
    الاشتراك في تغييرات جدول لمكتب محدد

    Returns:
    --------
    callable
        دالة لإلغاء الاشتراك
    """
    key = (table or ALL_TABLES, office_id)
    with _lock:
        _subscribers[key].append(callback)

    def unsubscribe():
        with _lock:
            callbacks = _subscribers.get(key)
            if callbacks and callback in callbacks:
                callbacks.remove(callback)
            if not callbacks:
                _subscribers.pop(key, None)

    return unsubscribe


def subscriber_count():
    with _lock:
        return sum(len(v) for v in _subscribers.values())


def publish(change):
    with _lock:
        callbacks = list(_subscribers.get((change['table'], change['office_id']), ()))
        callbacks += list(_subscribers.get((ALL_TABLES, change['office_id']), ()))
    for callback in callbacks:
        try:
            callback(dict(change))
        except Exception:
            LOGGER.exception('Change feed subscriber failed for %s', change['table'])


def owner_key(obj):
    """مفتاح المالك لصف: المكتب أو جهاز الزائر"""
    if obj.office_id is not None:
        return obj.office_id
    return f'guest:{obj.guest_key}'


def record(session, table, owner, event_name, row_id):
    """تسجيل تغيير ليُرسل بعد الـ commit"""
    pending = session.info.setdefault(_INFO_KEY, OrderedDict())
    key = (table, owner, row_id)
    previous = pending.get(key)
    # INSERT يبقى INSERT عند تعديله لاحقاً في نفس المعاملة، والحذف يتغلب
    if previous is None or event_name == 'DELETE':
        pending[key] = event_name
    elif previous == 'DELETE' and event_name == 'INSERT':
        # نفس المعرف أُعيد استخدامه بعد الحذف
        pending[key] = 'UPDATE'


def record_many(session, table, owner, event_name, row_ids):
    for row_id in row_ids:
        record(session, table, owner, event_name, row_id)


def _tracked(obj):
    table = getattr(obj, '__table__', None)
    return table is not None and 'office_id' in table.c


def _after_flush(session, flush_context):
    for obj in session.new:
        if _tracked(obj):
            record(session, obj.__tablename__, owner_key(obj), 'INSERT', obj.id)
    for obj in session.dirty:
        if _tracked(obj) and session.is_modified(obj, include_collections=False):
            record(session, obj.__tablename__, owner_key(obj), 'UPDATE', obj.id)
    for obj in session.deleted:
        if _tracked(obj):
            record(session, obj.__tablename__, owner_key(obj), 'DELETE', obj.id)


def _after_commit(session):
    pending = session.info.pop(_INFO_KEY, None)
    if not pending:
        return
    for (table, office_id, row_id), event_name in pending.items():
        publish({'table': table, 'office_id': office_id, 'event': event_name, 'id': row_id})


def _after_rollback(session):
    session.info.pop(_INFO_KEY, None)


def install():
    """ربط مستمعي الجلسة (مرة واحدة)"""
    global _installed
    if _installed:
        return
    event.listen(Session, 'after_flush', _after_flush)
    event.listen(Session, 'after_commit', _after_commit)
    event.listen(Session, 'after_soft_rollback', lambda session, previous: _after_rollback(session))
    _installed = True
