"""Rule filtering, temporary storage and MISP, Redis and Zabbix helpers for handling TheHive cases."""

__version__ = "0.1.0"