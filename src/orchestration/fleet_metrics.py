#!/usr/bin/env python3

from prometheus_client import Counter, Gauge, Histogram

PODS_CREATED = Counter('loadtest_fleet_pods_created_total', 'Worker pods submitted to the cluster')
PODS_DELETED = Counter('loadtest_fleet_pods_deleted_total', 'Worker pod deletions requested')
CLEANUP_FAILURES = Counter('loadtest_fleet_cleanup_failures_total', 'Worker pod deletions that failed')
READY_TIMEOUTS = Counter('loadtest_fleet_ready_timeouts_total', 'Worker pods that missed their readiness deadline')
READY_WAIT = Histogram('loadtest_fleet_ready_wait_seconds', 'Time from pod creation until ready')
READY_WORKERS = Gauge('loadtest_fleet_ready_workers', 'Worker pods currently ready')

REMOTE_COMMANDS = Counter('loadtest_fleet_remote_commands_total',
                          'Remote commands executed in worker pods',
                          ['outcome'])
REMOTE_COMMAND_DURATION = Histogram('loadtest_fleet_remote_command_duration_seconds',
                                    'Duration of remote commands executed in worker pods')
