import time
import socket
import threading
import logging
from socketserver import ThreadingMixIn
from wsgiref.simple_server import make_server, WSGIServer

from prometheus_client import Counter, Gauge, Histogram, CollectorRegistry
from prometheus_client.exposition import make_wsgi_app

logger = logging.getLogger(__name__)


# Threaded WSGI server for the Prometheus metrics
class ThreadingWSGIServer(ThreadingMixIn, WSGIServer):
    """A WSGI server that runs in a separate thread to not block the pool."""
    allow_reuse_address = True
    daemon_threads = True


class Monitor:
    """Prometheus metrics for one TWAMM pool, kept in an isolated registry."""

    def __init__(self, host="127.0.0.1", port=9090):
        self.host = host
        self.port = port
        self.server = None
        self.thread = None

        self.registry = CollectorRegistry()

        self.operations = Counter('twamm_operations_total', 'Pool operations by type and outcome',
                                  ['operation', 'status'], registry=self.registry)
        self.virtual_steps = Counter('twamm_virtual_order_steps_total',
                                     'Virtual trade steps executed', registry=self.registry)
        self.virtual_sold = Counter('twamm_virtual_order_sold_total',
                                    'Amount sold by long-term orders', ['token'],
                                    registry=self.registry)
        self.sales_rate = Gauge('twamm_sales_rate', 'Aggregate long-term sales rate',
                                ['token'], registry=self.registry)
        self.reserve = Gauge('twamm_reserve', 'Pool reserve', ['token'], registry=self.registry)
        self.active_orders = Gauge('twamm_active_orders', 'Active long-term orders',
                                   registry=self.registry)
        self.last_virtual_order_block = Gauge('twamm_last_virtual_order_block',
                                              'Block virtual orders are executed to',
                                              registry=self.registry)
        self.operation_latency = Histogram('twamm_operation_latency_seconds',
                                           'Time to process a pool operation',
                                           registry=self.registry)

    def start_server(self, max_retries: int = 5, retry_delay: float = 2):
        """Starts the Prometheus HTTP server with retry logic."""
        app = make_wsgi_app(self.registry)

        for attempt in range(max_retries):
            try:
                self.server = make_server(self.host, self.port, app, ThreadingWSGIServer)
                self.server.socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)

                self.thread = threading.Thread(target=self.server.serve_forever)
                self.thread.daemon = True
                self.thread.start()
                logger.info(f"Prometheus server started on http://{self.host}:{self.port}")
                return
            except OSError as e:
                if e.errno == 98 and attempt < max_retries - 1:  # Address already in use
                    logger.warning(f"Port {self.port} in use, retrying in {retry_delay}s "
                                   f"(attempt {attempt+1}/{max_retries})...")
                    time.sleep(retry_delay)
                else:
                    logger.error(f"Failed to bind to port {self.port}: {e}")
                    raise

    def stop_server(self):
        """Stops the HTTP server."""
        if self.server:
            self.server.shutdown()
            self.server.server_close()
            self.server = None
            logger.info("Prometheus server stopped.")

    def record_operation(self, operation: str, status: str, latency: float):
        self.operations.labels(operation=operation, status=status).inc()
        self.operation_latency.observe(latency)

    def record_execution(self, report):
        self.virtual_steps.inc(report.steps)
        for token in (0, 1):
            if report.sold[token]:
                self.virtual_sold.labels(token=str(token)).inc(report.sold[token])

    def update(self, pool):
        """Refresh gauges from a TwammPool."""
        book = pool.book
        for token in (0, 1):
            self.sales_rate.labels(token=str(token)).set(book.pools[token].current_sales_rate)
        self.reserve.labels(token='0').set(pool.reserves.reserve0)
        self.reserve.labels(token='1').set(pool.reserves.reserve1)
        self.active_orders.set(len(book.active_orders()))
        self.last_virtual_order_block.set(book.last_virtual_order_block)
