"""Health subsystem — probes, aggregation, escalation, maintenance, scheduling."""

from .errors import HealthwatchError
from .models import HealthCheckRecord, Importance, MaintenanceMode, Service, ServiceState
