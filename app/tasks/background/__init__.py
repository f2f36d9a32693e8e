from .send_immediate_notification import send_immediate_notification_task

__all__ = ["send_immediate_notification_task"]
