# salesync/cli/delisting.py
import asyncio
import json

import click

from salesync.core.enums import MarketplaceType


def _print_result(result):
    click.echo(json.dumps(result.model_dump(mode="json"), indent=2))


@click.group()
def cli():
    """Sale detection and delisting operations"""


@cli.command("process-pending")
@click.option('--batch-size', type=int, default=None, help='Jobs run concurrently per batch')
def process_pending(batch_size):
    """Run every due pending delisting job"""
    from salesync.services.retry_manager import RetryManager

    result = asyncio.run(RetryManager().process_pending_jobs(batch_size=batch_size))
    _print_result(result)


@cli.command("retry-failed")
@click.option('--max-jobs', type=int, default=None, help='Maximum jobs to retry in this run')
def retry_failed(max_jobs):
    """Retry failed and partially failed delisting jobs"""
    from salesync.services.retry_manager import RetryManager

    result = asyncio.run(RetryManager().retry_failed_delistings(max_jobs=max_jobs))
    _print_result(result)


@cli.command("process-events")
@click.option('--limit', type=int, default=None, help='Maximum sale events to process in this run')
def process_events(limit):
    """Derive delisting jobs for sale events left unprocessed"""
    from salesync.services.sale_event_queue import SaleEventQueue

    result = asyncio.run(SaleEventQueue().process_unprocessed_sale_events(limit=limit))
    _print_result(result)


@cli.command("event-stats")
def event_stats():
    """Counts of unprocessed and failed sale events"""
    from salesync.services.sale_event_queue import SaleEventQueue

    _print_result(asyncio.run(SaleEventQueue().get_queue_stats()))


@cli.command("execute")
@click.argument('job_id')
def execute(job_id):
    """Execute one pending delisting job now"""
    from salesync.services.delisting_engine import DelistingEngine

    result = asyncio.run(DelistingEngine().execute_delisting_job(job_id))
    _print_result(result)
    if not result.success:
        raise SystemExit(1)


@cli.command("poll")
@click.option('--marketplace', type=click.Choice([m.value for m in MarketplaceType]), default=None)
def poll(marketplace):
    """Poll one marketplace (or all enabled ones) for sales"""
    from salesync.services.sale_poller import SalePoller

    poller = SalePoller()
    if marketplace:
        result = asyncio.run(poller.poll_marketplace(marketplace))
    else:
        result = asyncio.run(poller.poll_all_marketplaces())
    _print_result(result)


if __name__ == "__main__":
    cli()
