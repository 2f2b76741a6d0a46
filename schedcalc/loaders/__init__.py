from importlib import import_module

DEFAULT_FORMATS = {
    'chase': 'schedcalc.loaders.chase.ChaseLoader',
    'amex': 'schedcalc.loaders.amex.AmexLoader',
    'generic': 'schedcalc.loaders.generic.GenericLoader',
}


def detect_format(headers):
    """Pick a row parser from the header row alone; unknown layouts are 'generic'."""
    header_str = ','.join(headers).lower()
    if 'status' in header_str and 'debit' in header_str and 'credit' in header_str:
        return 'chase'
    if 'amount' in header_str and 'extended details' in header_str:
        return 'amex'
    return 'generic'


def get_loader(name, config=None):
    formats = (config or {}).get('csv_formats') or DEFAULT_FORMATS
    loader_path = formats[name]
    module_name, cls_name = loader_path.rsplit('.', 1)
    mod = import_module(module_name)
    return getattr(mod, cls_name)()
