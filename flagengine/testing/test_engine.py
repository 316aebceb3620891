import logging
import threading
import time
from random import Random

import pytest
from mock import patch

from flagengine.config import CacheConfig, Config
from flagengine.context import EvaluationContext
from flagengine.engine import EvaluationEngine
from flagengine.impl.bucketer import Bucketer
from flagengine.impl.model import FlagKind
from flagengine.impl.sampler import Sampler
from flagengine.testing.builders import *


def get_log_lines(caplog, level):
    return [line.message for line in caplog.records if line.levelname == level]


def rollout_flag(name='F', percentage=25):
    return FlagBuilder(name, FlagKind.PERCENTAGE).production(RuleBuilder().percentage(percentage)).build()


def kill_switch(name='DISABLE_TRADING', armed=True):
    return FlagBuilder(name, FlagKind.KILL_SWITCH).production(RuleBuilder(armed)).build()


HFT = FlagBuilder('HFT', FlagKind.AB_TEST).production(
    RuleBuilder().variant('control', 50).variant('variant_a', 30, 'advanced_charts').variant('variant_b', 20, 'advanced_charts', 'ai_recommendations')
).build()


def test_constructor_requires_catalog():
    with pytest.raises(TypeError):
        EvaluationEngine({'flags': {}})


def test_default_config():
    engine = EvaluationEngine(make_catalog())
    assert engine.config.environment == 'development'


def test_percentage_rollout_is_deterministic():
    engine = make_engine(rollout_flag())
    assert engine.is_enabled('F', EvaluationContext(user_id='user-1')) is True
    assert engine.is_enabled('F', EvaluationContext(user_id='user-2')) is False
    assert engine.is_enabled('F', EvaluationContext(user_id='user-42')) is False
    for _ in range(5):
        assert engine.is_enabled('F', EvaluationContext(user_id='user-1')) is True


def test_context_can_be_a_dict():
    engine = make_engine(rollout_flag())
    assert engine.is_enabled('F', {'userId': 'user-1'}) is True
    assert engine.is_enabled('F', {'user_id': 'user-2'}) is False


def test_invalid_context_type_raises():
    engine = make_engine(rollout_flag())
    with pytest.raises(TypeError):
        engine.is_enabled('F', 'user-1')


def test_regional_override_disables():
    flag = FlagBuilder('F').production(RuleBuilder().regions({'eu-west-1': False})).build()
    engine = make_engine(flag)
    assert engine.is_enabled('F', EvaluationContext(user_id='user-1', region='eu-west-1')) is False
    assert engine.is_enabled('F', EvaluationContext(user_id='user-1', region='us-east-1')) is True


def test_default_region_from_config():
    flag = FlagBuilder('F').production(RuleBuilder().regions({'eu-west-1': False})).build()
    engine = make_engine(flag, default_region='eu-west-1')
    assert engine.is_enabled('F', EvaluationContext(user_id='user-1')) is False


def test_environment_selects_rule():
    flag = FlagBuilder('F').environment('development', RuleBuilder(True)).production(RuleBuilder(False)).build()
    assert make_engine(flag, environment='development').is_enabled('F') is True
    assert make_engine(flag, environment='production').is_enabled('F') is False
    result = make_engine(flag, environment='staging').evaluate('F')
    assert result.enabled is False
    assert result.reason == {'kind': 'ERROR', 'errorKind': 'ENVIRONMENT_NOT_FOUND'}


def test_unknown_flag_is_disabled_with_warning(caplog):
    engine = make_engine()
    with caplog.at_level(logging.WARNING, logger='flagengine'):
        result = engine.evaluate('NOPE', EvaluationContext(user_id='user-1'))
    assert result.enabled is False
    assert result.reason == {'kind': 'ERROR', 'errorKind': 'FLAG_NOT_FOUND'}
    assert engine.is_enabled('NOPE') is False
    assert any('NOPE' in line for line in get_log_lines(caplog, 'WARNING'))


def test_evaluate_returns_variant():
    engine = make_engine(HFT)
    result = engine.evaluate('HFT', EvaluationContext(user_id='user-4'))
    assert result.enabled is True
    assert result.variant == 'variant_b'
    assert result.payload == ('advanced_charts', 'ai_recommendations')
    assert engine.is_enabled('HFT', EvaluationContext(user_id='user-4')) is True


def test_variant_distribution():
    engine = make_engine(HFT, cache=CacheConfig.disabled())
    counts = {'control': 0, 'variant_a': 0, 'variant_b': 0}
    total = 10000
    for i in range(total):
        counts[engine.evaluate('HFT', EvaluationContext(user_id='user-%d' % i)).variant] += 1
    assert abs(counts['control'] / total - 0.50) <= 0.03
    assert abs(counts['variant_a'] / total - 0.30) <= 0.03
    assert abs(counts['variant_b'] / total - 0.20) <= 0.03


def test_rollout_share_follows_percentage():
    flag = FlagBuilder('R', FlagKind.PERCENTAGE).salt('HFT').production(RuleBuilder().percentage(25)).build()
    engine = make_engine(flag, cache=CacheConfig.disabled())
    total = 10000
    enabled = len([i for i in range(total) if engine.is_enabled('R', EvaluationContext(user_id='user-%d' % i))])
    assert abs(enabled / total - 0.25) <= 0.03


class TestKillSwitch:
    def test_armed_switch_lets_feature_run(self):
        engine = make_engine(kill_switch(armed=True))
        assert engine.is_enabled('DISABLE_TRADING') is True
        assert engine.is_killed('DISABLE_TRADING') is False

    def test_pulled_switch_kills_feature(self):
        engine = make_engine(kill_switch(armed=False))
        assert engine.is_enabled('DISABLE_TRADING', EvaluationContext(user_id='user-1')) is False
        assert engine.is_killed('DISABLE_TRADING', EvaluationContext(user_id='user-1')) is True

    def test_unknown_switch_counts_as_pulled(self):
        assert make_engine().is_killed('DISABLE_TRADING') is True

    def test_pulling_switch_takes_effect_immediately(self):
        engine = make_engine(kill_switch(armed=True), rollout_flag())
        context = EvaluationContext(user_id='user-1')
        assert engine.is_killed('DISABLE_TRADING', context) is False
        assert engine.is_enabled('F', context) is True
        engine.replace_catalog(make_catalog(kill_switch(armed=False), rollout_flag()))
        assert engine.is_killed('DISABLE_TRADING', context) is True

    def test_switch_is_not_cached(self):
        engine = make_engine(kill_switch())
        with patch.object(engine._evaluator, 'evaluate', wraps=engine._evaluator.evaluate) as spy:
            engine.is_enabled('DISABLE_TRADING')
            engine.is_enabled('DISABLE_TRADING')
        assert spy.call_count == 2


class TestCache:
    def test_repeated_evaluation_is_served_from_cache(self):
        engine = make_engine(rollout_flag())
        with patch.object(engine._evaluator, 'evaluate', wraps=engine._evaluator.evaluate) as spy:
            first = engine.evaluate('F', EvaluationContext(user_id='user-1'))
            second = engine.evaluate('F', EvaluationContext(user_id='user-1'))
        assert first == second
        assert spy.call_count == 1

    def test_irrelevant_context_fields_share_entry(self):
        engine = make_engine(rollout_flag())
        with patch.object(engine._evaluator, 'evaluate', wraps=engine._evaluator.evaluate) as spy:
            engine.evaluate('F', EvaluationContext(user_id='user-1', segment='a', region='eu-west-1'))
            engine.evaluate('F', EvaluationContext(user_id='user-1', segment='b', region='us-east-1'))
            engine.evaluate('F', EvaluationContext(user_id='user-2'))
        assert spy.call_count == 2

    def test_clear_cache_forces_recompute(self):
        bucketer = Bucketer()
        engine = make_engine(rollout_flag(), bucketer=bucketer)
        context = EvaluationContext(user_id='user-1')
        with patch.object(bucketer, 'bucket', wraps=bucketer.bucket) as spy:
            assert engine.is_enabled('F', context) is True
            assert engine.is_enabled('F', context) is True
            assert spy.call_count == 1
            engine.clear_cache()
            assert engine.is_enabled('F', context) is True
            assert spy.call_count == 2

    def test_replace_catalog_discards_cached_results(self):
        engine = make_engine(rollout_flag(percentage=25))
        context = EvaluationContext(user_id='user-42')
        assert engine.is_enabled('F', context) is False
        engine.replace_catalog(make_catalog(rollout_flag(percentage=80)))
        assert engine.is_enabled('F', context) is True
        assert engine.catalog.get('F').rule_for('production').percentage == 80

    def test_replace_catalog_requires_catalog(self):
        with pytest.raises(TypeError):
            make_engine().replace_catalog([rollout_flag()])

    def test_results_expire(self):
        engine = make_engine(rollout_flag(), cache=CacheConfig(ttl=0.1))
        with patch.object(engine._evaluator, 'evaluate', wraps=engine._evaluator.evaluate) as spy:
            engine.evaluate('F', EvaluationContext(user_id='user-1'))
            time.sleep(0.2)
            engine.evaluate('F', EvaluationContext(user_id='user-1'))
        assert spy.call_count == 2

    def test_disabled_cache_always_evaluates(self):
        engine = make_engine(rollout_flag(), cache=CacheConfig.disabled())
        with patch.object(engine._evaluator, 'evaluate', wraps=engine._evaluator.evaluate) as spy:
            engine.evaluate('F', EvaluationContext(user_id='user-1'))
            engine.evaluate('F', EvaluationContext(user_id='user-1'))
        assert spy.call_count == 2
        engine.clear_cache()

    def test_sampled_results_are_not_cached(self):
        engine = make_engine(rollout_flag(percentage=50), sampler=Sampler(Random(1)))
        with patch.object(engine._evaluator, 'evaluate', wraps=engine._evaluator.evaluate) as spy:
            for _ in range(3):
                result = engine.evaluate('F')
                assert result.deterministic is False
        assert spy.call_count == 3

    def test_cache_read_failure_falls_back_to_evaluation(self, caplog):
        engine = make_engine(rollout_flag())
        with patch.object(engine._cache, 'get', side_effect=RuntimeError('boom')):
            assert engine.is_enabled('F', EvaluationContext(user_id='user-1')) is True
        assert any('boom' in line for line in get_log_lines(caplog, 'ERROR'))

    def test_background_sweep(self):
        with make_engine(rollout_flag(), cache=CacheConfig(ttl=0.05, sweep_interval=0.05)) as engine:
            engine.evaluate('F', EvaluationContext(user_id='user-1'))
            deadline = time.time() + 2
            while len(engine._cache) > 0 and time.time() < deadline:
                time.sleep(0.05)
            assert len(engine._cache) == 0
        assert engine._sweeper.stopped


def test_all_enabled():
    engine = make_engine(rollout_flag(), kill_switch(armed=False), FlagBuilder('B').production(RuleBuilder()).build())
    assert engine.all_enabled(EvaluationContext(user_id='user-1')) == {'F': True, 'DISABLE_TRADING': False, 'B': True}
    assert engine.all_enabled({'userId': 'user-2'}) == {'F': False, 'DISABLE_TRADING': False, 'B': True}


def test_all_flags_state():
    engine = make_engine(rollout_flag(), kill_switch(), HFT)
    state = engine.all_flags_state(EvaluationContext(user_id='user-4'), with_reasons=True)
    assert state.environment == 'production'
    assert state.to_values_map() == {
        'F': True,
        'DISABLE_TRADING': True,
        'HFT': {'enabled': True, 'variant': 'variant_b', 'payload': ['advanced_charts', 'ai_recommendations']},
    }
    assert state.get_flag_reason('F') == {'kind': 'ROLLOUT', 'bucket': 12}
    assert state.summary() == {'totalFeatures': 3, 'enabledFeatures': 3, 'enabledPercentage': 100, 'nonDeterministic': 0}
    assert state.to_json_dict()['context'] == {'userId': 'user-4'}


def test_flag_info():
    flag = FlagBuilder('NEW_DASHBOARD', FlagKind.PERCENTAGE).description('Updated dashboard') \
        .environment('development', RuleBuilder().percentage(100)) \
        .production(RuleBuilder().percentage(20)).build()
    engine = make_engine(flag, default_region='eu-west-1')
    assert engine.flag_info('NEW_DASHBOARD') == {
        'name': 'NEW_DASHBOARD',
        'displayName': 'NEW_DASHBOARD',
        'kind': 'percentage',
        'description': 'Updated dashboard',
        'environment': 'production',
        'defaultRegion': 'eu-west-1',
        'currentConfig': {'enabled': True, 'percentage': 20},
    }
    assert engine.flag_info('NOPE') is None
    assert make_engine(flag, environment='staging').flag_info('NEW_DASHBOARD')['currentConfig'] is None


@pytest.mark.parametrize('rule,status,percentage', [
    (RuleBuilder().percentage(20), 'gradual_rollout', 20),
    (RuleBuilder().percentage(100), 'fully_enabled', 100),
    (RuleBuilder(), 'fully_enabled', 100),
    (RuleBuilder(False).percentage(20), 'disabled', 0),
])
def test_rollout_status(rule, status, percentage):
    engine = make_engine(FlagBuilder('F', FlagKind.PERCENTAGE).production(rule).build())
    assert engine.rollout_status('F') == {
        'status': status,
        'percentage': percentage,
        'kind': 'percentage',
        'environment': 'production',
        'region': None,
    }


def test_rollout_status_of_unknown_flag():
    assert make_engine().rollout_status('NOPE') == {'status': 'unknown', 'percentage': 0, 'kind': None, 'environment': 'production', 'region': None}
    assert make_engine().rollout_status('NOPE', {'userId': 'user-1'})['isEnabled'] is False


def test_rollout_status_for_context():
    engine = make_engine(rollout_flag(percentage=25), default_region='eu-west-1')
    status = engine.rollout_status('F', EvaluationContext(user_id='user-1'))
    assert status['region'] == 'eu-west-1'
    assert status['isEnabled'] is True
    status = engine.rollout_status('F', {'userId': 'user-2', 'region': 'us-east-1'})
    assert status['region'] == 'us-east-1'
    assert status['isEnabled'] is False
    assert 'isEnabled' not in engine.rollout_status('F')


def test_rollout_status_without_rule_for_environment():
    flag = FlagBuilder('F').environment('development', RuleBuilder()).build()
    assert make_engine(flag).rollout_status('F')['status'] == 'disabled'


def test_concurrent_evaluation_and_reload():
    engine = make_engine(rollout_flag(percentage=25))
    errors = []
    stop = threading.Event()

    def evaluate():
        try:
            while not stop.is_set():
                for i in range(1, 11):
                    engine.evaluate('F', EvaluationContext(user_id='user-%d' % i))
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=evaluate) for _ in range(4)]
    for t in threads:
        t.start()
    for percentage in (80, 25, 80, 25, 80):
        engine.replace_catalog(make_catalog(rollout_flag(percentage=percentage)))
        time.sleep(0.01)
    stop.set()
    for t in threads:
        t.join()
    assert errors == []
    # user-42 is in bucket 74: in at 80, out at 25
    assert engine.is_enabled('F', EvaluationContext(user_id='user-42')) is True


def test_changing_a_returned_reason_does_not_affect_cached_result():
    engine = make_engine(rollout_flag())
    context = EvaluationContext(user_id='user-1')
    engine.evaluate('F', context).reason['kind'] = 'CHANGED'
    assert engine.evaluate('F', context).reason == {'kind': 'ROLLOUT', 'bucket': 8}


def test_reasons_of_different_flags_are_independent():
    engine = make_engine(FlagBuilder('A').production(RuleBuilder()).build(), FlagBuilder('B').production(RuleBuilder()).build(),
                         cache=CacheConfig.disabled())
    state = engine.all_flags_state(EvaluationContext(user_id='user-1'), with_reasons=True)
    state.to_json_dict()['flags']['A']['reason']['note'] = 'x'
    state.get_flag_reason('A')['note'] = 'x'
    assert state.get_flag_reason('A') == {'kind': 'FALLTHROUGH'}
    assert state.to_json_dict()['flags']['B']['reason'] == {'kind': 'FALLTHROUGH'}
    assert engine.evaluate('B').reason == {'kind': 'FALLTHROUGH'}


def test_catalog_cannot_be_changed_through_engine():
    flag = FlagBuilder('G').production(RuleBuilder().regions({'eu-west-1': False})).build()
    engine = make_engine(flag)
    with pytest.raises(TypeError):
        engine.catalog.get('G').rule_for('production').regions['eu-west-1'] = True
    assert engine.is_enabled('G', {'region': 'eu-west-1'}) is False
