"""
Status routes - scheduler state and manual backup trigger.
"""

from flask import Blueprint, current_app, jsonify

from backuper.scheduler import SchedulerError


bp = Blueprint('status', __name__, url_prefix='/api')


def _get_scheduler():
    return current_app.extensions.get('backup_scheduler')


@bp.route('/status', methods=['GET'])
def get_status():
    """
    Get backup scheduler status.

    Returns:
        JSON with scheduler state, schedule, next run and last run
    """
    backup_scheduler = _get_scheduler()
    if backup_scheduler is None:
        return jsonify({'error': 'Scheduler not initialized'}), 503

    return jsonify(backup_scheduler.get_status())


@bp.route('/backup/run', methods=['POST'])
def run_backup_now():
    """
    Queue a backup run for immediate execution.

    Returns:
        JSON with message (202), or error if the scheduler is not running
    """
    backup_scheduler = _get_scheduler()
    if backup_scheduler is None:
        return jsonify({'error': 'Scheduler not initialized'}), 503

    try:
        backup_scheduler.trigger_now()
    except SchedulerError as e:
        return jsonify({'error': str(e)}), 409

    return jsonify({
        'message': 'Backup has been queued for immediate execution'
    }), 202
