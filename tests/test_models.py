import pytest

from canary_courier.errors import ConfigurationConflict
from canary_courier.models import AttachmentSpec, CanaryOpts, Metric, parse_duration, target_group_name, weight_steps


@pytest.mark.parametrize('step,expected', [
    (25, [1, 26, 51, 76, 100]),
    (50, [1, 51, 100]),
    (99, [1, 100]),
    (100, [1, 100]),
    (33, [1, 34, 67, 100]),
])
def test_weight_steps(step, expected):
    assert list(weight_steps(step)) == expected


@pytest.mark.parametrize('step', range(1, 101))
def test_weight_steps_are_increasing_and_pinned(step):
    weights = list(weight_steps(step))

    assert weights[-1] == 100
    assert all(a < b for a, b in zip(weights, weights[1:]))


def test_weight_steps_rejects_non_positive_step():
    with pytest.raises(ConfigurationConflict):
        list(weight_steps(0))


@pytest.mark.parametrize('value,expected', [
    ('1s', 1.0),
    ('500ms', 0.5),
    ('2m', 120.0),
    ('1m30s', 90.0),
    ('1h', 3600.0),
    ('2.5', 2.5),
    (3, 3.0),
    (None, None),
])
def test_parse_duration(value, expected):
    assert parse_duration(value) == expected


@pytest.mark.parametrize('value', ['', 'soon', '5 minutes', '1s2'])
def test_parse_duration_rejects_garbage(value):
    with pytest.raises(ConfigurationConflict):
        parse_duration(value)


def test_target_group_name():
    assert target_group_name('ng1', 30080, 'v2') == 'ng1-30080-v2'


def test_canary_opts_defaults():
    opts = CanaryOpts()

    assert opts.step_or(5) == 5
    assert opts.interval_or(1.0) == 1.0
    assert CanaryOpts(advancement_step=10, advancement_interval=0).step_or(5) == 10
    assert CanaryOpts(advancement_step=10, advancement_interval=0).interval_or(1.0) == 0


def test_attachment_from_dict():
    a = AttachmentSpec.from_dict({
        'node_group_name': 'ng1',
        'listener_arn': 'arn:listener',
        'node_port': '30080',
        'hosts': ['a.example.com'],
    })

    assert a.node_port == 30080
    assert a.protocol == 'HTTP'
    assert a.path_patterns == []


def test_attachment_requires_listener():
    with pytest.raises(ConfigurationConflict, match='listener_arn'):
        AttachmentSpec.from_dict({'node_group_name': 'ng1'})


def test_metric_from_dict():
    m = Metric.from_dict({'name': 'errors', 'provider': 'CloudWatch', 'query': '[]', 'max': '1', 'interval': '5m'})

    assert m.provider == 'cloudwatch'
    assert m.max == 1.0
    assert m.interval == 300.0
    assert m.schedule == 300.0
    assert m.is_healthy(0.5)
    assert not m.is_healthy(1.5)


def test_metric_rejects_unknown_provider():
    with pytest.raises(ConfigurationConflict):
        Metric.from_dict({'name': 'x', 'provider': 'prometheus', 'query': 'up'})
