# Flask app setup, database connection, and register routes
import logging
import os

from flask import Flask
from flask_cors import CORS

from moaqeb import change_feed
from moaqeb.accounts_routes import accounts_bp
from moaqeb.changes_routes import changes_bp
from moaqeb.config import DATABASE_URL, ENABLE_SCHEDULERS
from moaqeb.contacts_routes import contacts_bp
from moaqeb.expenses_routes import expenses_bp
from moaqeb.models import db
from moaqeb.payroll_routes import payroll_bp
from moaqeb.reports_routes import reports_bp
from moaqeb.settings_routes import settings_bp
from moaqeb.transactions_routes import transactions_bp


def create_app(test_config=None):
	app = Flask(__name__)
	app.config['SQLALCHEMY_DATABASE_URI'] = DATABASE_URL
	app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
	app.config['JSON_AS_ASCII'] = False
	if test_config:
		app.config.update(test_config)

	# تفعيل CORS لجميع المصادر
	CORS(app)

	db.init_app(app)
	change_feed.install()

	app.register_blueprint(transactions_bp, url_prefix='/api')
	app.register_blueprint(accounts_bp, url_prefix='/api')
	app.register_blueprint(contacts_bp, url_prefix='/api')
	app.register_blueprint(expenses_bp, url_prefix='/api')
	app.register_blueprint(payroll_bp, url_prefix='/api')
	app.register_blueprint(reports_bp, url_prefix='/api')
	app.register_blueprint(settings_bp, url_prefix='/api')
	app.register_blueprint(changes_bp, url_prefix='/api')

	@app.route('/routes')
	def list_routes():
		output = []
		for rule in app.url_map.iter_rules():
			methods = ','.join(sorted(rule.methods))
			output.append("{:50s} {:30s} {}".format(rule.endpoint, methods, rule.rule))
		return "<br>".join(sorted(output))

	with app.app_context():
		db.create_all()

	return app


def reset_database(app):
	"""إعادة تهيئة قاعدة البيانات بالكامل (حذف وإنشاء جميع الجداول من جديد)."""
	with app.app_context():
		db.session.remove()
		db.drop_all()
		db.create_all()
		db.session.commit()


if __name__ == "__main__":
	logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s %(name)s: %(message)s')
	port = int(os.getenv("PORT", 8001))
	debug_mode = os.getenv("FLASK_DEBUG", "0") in ("1", "true", "True")
	app = create_app()
	print(f"\n[INFO] 🚀 Starting Flask server on http://0.0.0.0:{port} (CORS enabled for all origins)...")
	print(f"[INFO] Debug mode: {'ON' if debug_mode else 'OFF'}")

	if ENABLE_SCHEDULERS:
		from moaqeb.schedulers import start_all_schedulers
		start_all_schedulers(app)

	app.run(host="0.0.0.0", port=port, debug=debug_mode, threaded=True)
