# schedcalc/cli.py
import logging
import os
from pathlib import Path

import click
from dotenv import load_dotenv

from schedcalc.ai import LLMClient, ScheduleCClassifier
from schedcalc.classify import (
    BackgroundCategorizer,
    apply_vendor_rules,
    categorize_uncategorized,
    manual_classify,
)
from schedcalc.config import load_config, save_config
from schedcalc.core.errors import SchedCalcError
from schedcalc.core.models import UPLOAD_SOURCES, VendorRule
from schedcalc.database import SQLiteStore
from schedcalc.deductions import (
    DeductionSettings,
    home_office_deduction,
    saved_deductions,
    vehicle_deduction,
)
from schedcalc.ingest import ingest_upload
from schedcalc.summary import (
    business_summary,
    schedule_c_summary,
    summarize_transactions,
    transactions_frame,
)


class SchedCalcGroup(click.Group):
    """Report domain errors as clean CLI errors instead of tracebacks."""

    def invoke(self, ctx):
        try:
            return super().invoke(ctx)
        except (SchedCalcError, ValueError) as e:
            raise click.ClickException(str(e)) from e


def build_classifier(config):
    section = config.get('classifier') or {}
    return ScheduleCClassifier(
        client=LLMClient(),
        batch_timeout=float(section.get('batch_timeout', 60)),
        single_timeout=float(section.get('single_timeout', 30)),
    )


def _batch_size(config):
    return int((config.get('classifier') or {}).get('batch_size', 10))


def _money(value):
    return f"${value:,.2f}"


@click.group(cls=SchedCalcGroup)
@click.option(
    '--config', 'config_path',
    default='config.yaml',
    type=click.Path(dir_okay=False),
    help='Path to config.yaml (defaults are used when it does not exist)'
)
@click.option(
    '--db', 'db_path',
    default=None,
    type=click.Path(dir_okay=False),
    help='SQLite database file (overrides db_path from the config)'
)
@click.option(
    '--env-file', 'env_file',
    default=None,
    type=click.Path(exists=True, dir_okay=False),
    help='Optional .env file containing API keys for the LLM providers'
)
@click.pass_context
def cli(ctx, config_path, db_path, env_file):
    """
    Import bank and credit card CSV exports, classify transactions into
    IRS Schedule C lines and report the totals.
    """
    if env_file:
        load_dotenv(env_file)
    logging.basicConfig(
        level=os.getenv('SCHEDCALC_LOG_LEVEL', 'INFO').upper(),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    cfg = load_config(config_path)
    if db_path:
        cfg['db_path'] = db_path
    ctx.obj = {'config': cfg, 'config_path': config_path}


def _store(ctx):
    obj = ctx.obj
    if 'store' not in obj:
        obj['store'] = SQLiteStore(obj['config']['db_path'])
    return obj['store']


@cli.command('init-config')
@click.pass_context
def init_config(ctx):
    """Write the effective configuration to the --config path."""
    path = ctx.obj['config_path']
    save_config(ctx.obj['config'], path)
    click.echo(f"Wrote configuration to {path}.")


@cli.command()
@click.argument('csv_file', type=click.Path(exists=True, dir_okay=False))
@click.option(
    '--source',
    default='expenses',
    type=click.Choice(UPLOAD_SOURCES),
    help='What the file holds: income, expenses or both'
)
@click.option(
    '--categorize/--no-categorize',
    default=True,
    help='Classify business transactions with the LLM after the upload'
)
@click.pass_context
def upload(ctx, csv_file, source, categorize):
    """Import one CSV export."""
    cfg = ctx.obj['config']
    store = _store(ctx)
    content = Path(csv_file).read_bytes()

    categorizer = None
    if categorize:
        try:
            categorizer = BackgroundCategorizer(store, build_classifier(cfg), _batch_size(cfg))
        except RuntimeError as e:
            click.echo(f"⚠️  Skipping auto-categorization: {e}", err=True)

    try:
        result = ingest_upload(
            store, content, os.path.basename(csv_file), source,
            config=cfg, categorizer=categorizer,
        )
        parsed = result.parsed
        click.echo(
            f"Uploaded {result.batch.filename} ({parsed.format} format): "
            f"{parsed.parsed_count} transaction(s) parsed, {result.persisted} stored, "
            f"{parsed.payments_excluded} payment(s) excluded."
        )
        if parsed.rows_skipped or parsed.rows_failed:
            click.echo(f"Skipped {parsed.rows_skipped} short row(s), {parsed.rows_failed} invalid row(s).")
    finally:
        # The process stays up until background categorization finishes.
        if categorizer is not None:
            categorizer.shutdown(wait=True)


@cli.command()
@click.pass_context
def categorize(ctx):
    """Classify business transactions that still lack a category or line."""
    cfg = ctx.obj['config']
    store = _store(ctx)
    business = store.count_business()
    pending = store.count_classification_candidates()
    click.echo(f"{business} business transaction(s), {pending} need classification.")
    if business == 0:
        click.echo("Mark transactions as business with toggle-business first.")
        return
    if pending == 0:
        click.echo("Nothing to classify.")
        return

    try:
        classifier = build_classifier(cfg)
    except RuntimeError as e:
        raise click.ClickException(str(e)) from e
    result = categorize_uncategorized(store, classifier, _batch_size(cfg))
    click.echo(
        f"Processed {result.processed} of {result.total} transaction(s) "
        f"({result.missing} missing, {result.failed} failed)."
    )


@cli.command()
@click.argument('tx_id')
@click.option('--category', default=None)
@click.option('--purpose', default=None)
@click.option('--expensable/--not-expensable', default=None)
@click.option('--line', 'schedule_c_line', type=int, default=None,
              help='Schedule C line (8-27, or 0 to clear)')
@click.pass_context
def classify(ctx, tx_id, category, purpose, expensable, schedule_c_line):
    """Manually set a transaction's classification."""
    updated = manual_classify(
        _store(ctx), tx_id,
        category=category, purpose=purpose,
        expensable=expensable, schedule_c_line=schedule_c_line,
    )
    if not updated:
        raise click.ClickException(f"Transaction not found: {tx_id}")
    click.echo(f"Updated transaction {tx_id}.")


@cli.command('toggle-business')
@click.argument('tx_id')
@click.option('--business/--personal', 'is_business', default=True)
@click.pass_context
def toggle_business(ctx, tx_id, is_business):
    """Mark one transaction as business or personal."""
    if not _store(ctx).set_business(tx_id, is_business):
        raise click.ClickException(f"Transaction not found: {tx_id}")
    label = 'business' if is_business else 'personal'
    click.echo(f"Marked {tx_id} as {label}.")


@cli.command('toggle-all-business')
@click.option('--business/--personal', 'is_business', default=True)
@click.option('--id', 'ids', multiple=True, help='Transaction id (repeatable)')
@click.option('--card', default=None, help='Only transactions from this card')
@click.option('--type', 'tx_type', default=None, help='Only transactions of this type')
@click.pass_context
def toggle_all_business(ctx, is_business, ids, card, tx_type):
    """Mark many transactions as business or personal at once."""
    count = _store(ctx).set_business_bulk(is_business, list(ids) or None, card, tx_type)
    label = 'business' if is_business else 'personal'
    click.echo(f"Marked {count} transaction(s) as {label}.")


@cli.group()
def rule():
    """Manage vendor rules."""


@rule.command('add')
@click.argument('vendor')
@click.argument('category')
@click.option('--type', 'tx_type', default='expense',
              type=click.Choice(['income', 'expense', 'refund', 'uncategorized']))
@click.option('--expensable/--not-expensable', default=True)
@click.option('--line', 'schedule_c_line', type=int, default=0)
@click.pass_context
def rule_add(ctx, vendor, category, tx_type, expensable, schedule_c_line):
    """Create or replace the rule for VENDOR."""
    saved = _store(ctx).upsert_vendor_rule(
        VendorRule(
            vendor=vendor, category=category, type=tx_type,
            expensable=expensable, schedule_c_line=schedule_c_line,
        )
    )
    click.echo(f"Saved rule {saved.id}: {saved.vendor} -> {saved.category}.")


@rule.command('list')
@click.pass_context
def rule_list(ctx):
    rules = _store(ctx).list_vendor_rules()
    if not rules:
        click.echo("No vendor rules.")
        return
    for r in rules:
        flag = 'expensable' if r.expensable else 'not expensable'
        click.echo(f"{r.id}\t{r.vendor}\t{r.category}\t{r.type}\tline {r.schedule_c_line}\t{flag}")


@rule.command('apply')
@click.pass_context
def rule_apply(ctx):
    """Apply vendor rules to uncategorized transactions."""
    count = apply_vendor_rules(_store(ctx))
    click.echo(f"Applied vendor rules to {count} transaction(s).")


@cli.command()
@click.option('--high-value', is_flag=True, default=False)
@click.option('--threshold', type=float, default=100.0)
@click.option('--type', 'tx_type', default=None)
@click.option('--card', default=None)
@click.option('--category', default=None)
@click.option('--search', default=None)
@click.option('--recurring', is_flag=True, default=False)
@click.option('--sort-by', default=None,
              type=click.Choice(['amount', 'vendor', 'date', 'category', 'business']))
@click.option('--sort-dir', default=None, type=click.Choice(['asc', 'desc']))
@click.option('--page', type=int, default=1)
@click.option('--page-size', type=int, default=50)
@click.option('--all', 'unlimited', is_flag=True, default=False)
@click.pass_context
def transactions(ctx, high_value, threshold, tx_type, card, category, search,
                 recurring, sort_by, sort_dir, page, page_size, unlimited):
    """List stored transactions."""
    result = _store(ctx).query_transactions(
        high_value=high_value, threshold=threshold, tx_type=tx_type, card=card,
        category=category, search=search, recurring=recurring, sort_by=sort_by,
        sort_dir=sort_dir, page=page, page_size=page_size, unlimited=unlimited,
    )
    if not result.transactions:
        click.echo("No transactions found.")
        return
    click.echo(transactions_frame(result.transactions).to_string(index=False))
    stats = summarize_transactions(result.transactions)
    click.echo(
        f"\nPage {result.page} ({len(result.transactions)} of {result.total}); "
        f"income {_money(stats['total_income'])}, expenses {_money(stats['total_expenses'])}, "
        f"{stats['unique_vendors']} vendor(s)."
    )


def _echo_schedule_c(data):
    for key, value in data['schedule_c'].items():
        click.echo(f"{key:32} {_money(value)}")
    click.echo("")
    for key, value in data['summary'].items():
        if isinstance(value, float):
            value = _money(value)
        click.echo(f"{key:32} {value}")


@cli.command()
@click.pass_context
def summary(ctx):
    """Show the Schedule C summary."""
    _echo_schedule_c(schedule_c_summary(_store(ctx), ctx.obj['config']))


@cli.command('business-summary')
@click.pass_context
def business_summary_cmd(ctx):
    """Show the Schedule C summary for business transactions only."""
    _echo_schedule_c(business_summary(_store(ctx), ctx.obj['config']))


@cli.group()
def deductions():
    """Vehicle and home office deductions."""


@deductions.command('vehicle')
@click.argument('miles', type=int)
@click.pass_context
def deductions_vehicle(ctx, miles):
    settings = DeductionSettings.from_config(ctx.obj['config'])
    amount = vehicle_deduction(miles, settings)
    _store(ctx).save_vehicle_miles(miles)
    click.echo(f"Saved {miles} business mile(s): deduction {_money(amount)}.")


@deductions.command('home-office')
@click.argument('office_sqft', type=int)
@click.argument('total_sqft', type=int)
@click.option('--simplified/--actual', default=True)
@click.pass_context
def deductions_home_office(ctx, office_sqft, total_sqft, simplified):
    settings = DeductionSettings.from_config(ctx.obj['config'])
    result = home_office_deduction(office_sqft, total_sqft, simplified, settings)
    _store(ctx).save_home_office(office_sqft, total_sqft, simplified)
    click.echo(f"Saved home office: deduction {_money(result.deduction)}, {result.method}.")


@deductions.command('show')
@click.pass_context
def deductions_show(ctx):
    settings = DeductionSettings.from_config(ctx.obj['config'])
    data = saved_deductions(_store(ctx), settings)
    click.echo(f"Business miles: {data['business_miles']} -> {_money(data['vehicle_deduction'])}")
    click.echo(
        f"Home office: {data['home_office_sqft']} of {data['total_home_sqft']} sq ft "
        f"-> {_money(data['home_office_deduction'])} ({data['home_office_method']})"
    )


@cli.command()
@click.pass_context
def categories(ctx):
    """List the Schedule C categories."""
    for c in _store(ctx).list_categories():
        click.echo(f"Line {c.line_number:>2}  {c.name} - {c.description}")


@cli.command('fix-income')
@click.pass_context
def fix_income(ctx):
    """Re-type every income transaction as an expense."""
    before, fixed = _store(ctx).fix_income_transactions()
    click.echo(f"Fixed {fixed} of {before} income transaction(s).")


@cli.command()
@click.confirmation_option(prompt='Delete all transactions, uploads, rules and deductions?')
@click.pass_context
def clear(ctx):
    """Delete all stored data."""
    for entry in _store(ctx).clear_all_data():
        click.echo(f"{entry['table']}: deleted {entry['deleted_count']} of {entry['original_count']}")


def main():
    cli()


if __name__ == '__main__':
    main()
