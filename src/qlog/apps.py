from django.apps import AppConfig


class QlogConfig(AppConfig):
    name = "qlog"
    verbose_name = "Query log statistics"
