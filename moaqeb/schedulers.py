import time


def start_all_schedulers(app):
	"""Start all background schedulers.

	In production (gunicorn multi-worker), do NOT run this inside the web workers.
	Run it in a dedicated process with ENABLE_SCHEDULERS=1.
	"""
	started = []
	try:
		from moaqeb.salary_scheduler import start_salary_scheduler
		started.append(start_salary_scheduler(app))
	except Exception as exc:
		print(f"[WARNING] Salary scheduler not started: {exc}")
	return started


def run_forever(poll_seconds: float = 3600.0):
	"""Keep the scheduler process alive."""
	while True:
		time.sleep(poll_seconds)


if __name__ == "__main__":
	from moaqeb.app import create_app

	start_all_schedulers(create_app())
	run_forever()
