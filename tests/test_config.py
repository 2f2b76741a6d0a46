import pytest
import yaml

from schedcalc.config import DEFAULT_CONFIG, MAX_UPLOAD_BYTES, load_config, save_config


def test_missing_file_yields_defaults(tmp_path):
    cfg = load_config(tmp_path / 'nope.yaml')
    assert cfg == DEFAULT_CONFIG
    assert cfg['max_upload_bytes'] == MAX_UPLOAD_BYTES == 10 * 1024 * 1024
    assert load_config() == DEFAULT_CONFIG


def test_partial_config_is_merged_with_defaults(tmp_path):
    path = tmp_path / 'config.yaml'
    path.write_text(yaml.safe_dump({
        'db_path': '/var/lib/schedcalc.db',
        'classifier': {'batch_size': 5},
    }))

    cfg = load_config(path)

    assert cfg['db_path'] == '/var/lib/schedcalc.db'
    assert cfg['classifier'] == {'batch_size': 5, 'batch_timeout': 60, 'single_timeout': 30}
    assert cfg['deductions']['home_office_max_sqft'] == 300
    assert set(cfg['csv_formats']) == {'chase', 'amex', 'generic'}


def test_non_mapping_config_is_rejected(tmp_path):
    path = tmp_path / 'config.yaml'
    path.write_text('- just\n- a list\n')
    with pytest.raises(ValueError):
        load_config(path)


def test_save_then_load(tmp_path):
    path = tmp_path / 'nested' / 'config.yaml'
    cfg = load_config()
    cfg['tax_year'] = 2025
    save_config(cfg, path)
    assert load_config(path)['tax_year'] == 2025
