"""Tests for domains.forecasting.ml.trainer module."""

import json
import math
import pytest
import numpy as np
from unittest.mock import patch

from cfo_forecast.domains.forecasting.data.sequences import prepare_training_data
from cfo_forecast.domains.forecasting.ml.models import build_mlp_model
from cfo_forecast.domains.forecasting.ml.trainer import (
    CancellationToken,
    CandidateResult,
    TrainingRun,
    EpochMetrics,
    architecture_search,
    pseudo_accuracy,
    train_model,
    _validation_split_for
)
from cfo_forecast.shared.exceptions import InsufficientDataError, TrainingCancelledError


@pytest.fixture
def training_data():
    """Twenty years of a rising series, lookback 3."""
    obs = [{'year': 2000 + i, 'value': 1000 + 50 * i + (i % 3) * 20} for i in range(20)]
    return prepare_training_data(obs, 3)


class TestPseudoAccuracy:
    """Tests for pseudo_accuracy()."""

    def test_formula(self):
        """Test 100 * (1 - mae / mean)."""
        assert pseudo_accuracy(0.1, 0.5) == pytest.approx(80.0)

    def test_floored_at_zero(self):
        """Test an error larger than the mean gives 0, not a negative value."""
        assert pseudo_accuracy(2.0, 0.5) == 0.0

    def test_zero_mean(self):
        """Test a zero mean target gives 0."""
        assert pseudo_accuracy(0.1, 0.0) == 0.0

    def test_nan_mae(self):
        """Test a NaN error gives 0."""
        assert pseudo_accuracy(math.nan, 0.5) == 0.0


class TestValidationSplit:
    """Tests for _validation_split_for()."""

    def test_kept_when_both_sides_nonempty(self):
        """Test 10 samples at 0.2 keep the split."""
        assert _validation_split_for(10, 0.2) == 0.2

    def test_disabled_for_tiny_sets(self):
        """Test a split that would leave no validation row is dropped."""
        assert _validation_split_for(1, 0.2) == 0.0
        assert _validation_split_for(10, 0.0) == 0.0


class TestTrainingRun:
    """Tests for TrainingRun / EpochMetrics."""

    def test_final_loss_nan_is_inf(self):
        """Test a NaN final loss ranks as +inf."""
        run = TrainingRun(history=[EpochMetrics(epoch=1, loss=math.nan, mae=0.1, accuracy=0.0)])
        assert run.final_loss == math.inf

    def test_empty_run(self):
        """Test a run without epochs."""
        run = TrainingRun()
        assert run.epochs_completed == 0
        assert run.final_loss == math.inf

    def test_metrics_dict_without_val_loss(self):
        """Test val_loss is omitted when validation was disabled."""
        metrics = EpochMetrics(epoch=1, loss=0.5, mae=0.3, accuracy=40.0)
        assert metrics.to_dict() == {'epoch': 1, 'loss': 0.5, 'mae': 0.3, 'accuracy': 40.0}

    def test_metrics_dict_non_finite_as_none(self):
        """Test a diverged epoch serializes to strict JSON."""
        metrics = EpochMetrics(epoch=3, loss=math.nan, mae=math.inf, accuracy=0.0,
                               val_loss=math.nan)
        data = metrics.to_dict()

        assert data == {'epoch': 3, 'loss': None, 'mae': None, 'accuracy': 0.0, 'val_loss': None}
        json.dumps(data, allow_nan=False)


class TestTrainModel:
    """Tests for train_model()."""

    def test_callback_sees_every_epoch_in_order(self, training_data):
        """Test on_epoch_end is called once per epoch, in order."""
        model = build_mlp_model(lookback=3, units=8)
        seen = []

        run = train_model(model, training_data.X, training_data.y,
                          on_epoch_end=lambda epoch, metrics: seen.append((epoch, metrics)),
                          epochs=4)

        assert [epoch for epoch, _ in seen] == [0, 1, 2, 3]
        assert run.epochs_completed == 4
        for _, metrics in seen:
            assert {'loss', 'mae', 'accuracy'} <= set(metrics)
            assert 0.0 <= metrics['accuracy'] <= 100.0

    def test_reports_val_loss_when_split_possible(self, training_data):
        """Test validation loss is reported with enough windows."""
        model = build_mlp_model(lookback=3, units=8)
        run = train_model(model, training_data.X, training_data.y, epochs=2)
        assert run.history[-1].val_loss is not None

    def test_trains_two_windows(self, worked_example):
        """Test the worked example trains on its two windows."""
        data = prepare_training_data(worked_example, 3)
        model = build_mlp_model(lookback=3, units=8)
        run = train_model(model, data.X, data.y, epochs=3)
        assert run.epochs_completed == 3

    def test_single_window_trains_without_validation(self):
        """Test one window disables the validation split instead of failing."""
        obs = [{"year": 2000 + i, "value": v} for i, v in enumerate([5, 9, 7])]
        data = prepare_training_data(obs, 2)
        model = build_mlp_model(lookback=2, units=4)
        run = train_model(model, data.X, data.y, epochs=2)
        assert run.history[-1].val_loss is None

    def test_loss_decreases_on_simple_series(self, training_data):
        """Test training makes progress on a smooth series."""
        model = build_mlp_model(lookback=3, units=32, learning_rate=0.01)
        run = train_model(model, training_data.X, training_data.y, epochs=60, validation_split=0.0)
        assert run.history[-1].loss < run.history[0].loss

    def test_empty_input_raises(self):
        """Test empty X names required vs available rows."""
        model = build_mlp_model(lookback=3, units=8)
        with pytest.raises(InsufficientDataError) as exc_info:
            train_model(model, np.empty((0, 3)), np.empty((0,)), epochs=1)
        assert exc_info.value.available == 0

    def test_cancel_stops_after_current_epoch(self, training_data):
        """Test a cancelled token stops training and raises."""
        model = build_mlp_model(lookback=3, units=8)
        token = CancellationToken()
        seen = []

        def on_epoch_end(epoch, metrics):
            seen.append(epoch)
            if epoch == 1:
                token.cancel()

        with pytest.raises(TrainingCancelledError) as exc_info:
            train_model(model, training_data.X, training_data.y, on_epoch_end=on_epoch_end,
                        epochs=50, cancel_token=token, model_name='civil-status')

        assert seen == [0, 1]
        assert exc_info.value.details['epochs_completed'] == 2


class TestArchitectureSearch:
    """Tests for architecture_search()."""

    def test_tries_every_candidate(self, training_data):
        """Test one result per candidate, in order."""
        candidates = ({'name': 'Small', 'units': 4}, {'name': 'Large', 'units': 16})
        result = architecture_search(training_data.X, training_data.y,
                                     candidates=candidates, short_epochs=2)

        assert [r.name for r in result.results] == ['Small', 'Large']
        assert result.best in result.results

    def test_winner_has_minimum_loss(self, training_data):
        """Test the best candidate has the lowest final loss."""
        result = architecture_search(training_data.X, training_data.y, short_epochs=2)
        assert result.best.loss == min(r.loss for r in result.results)

    def test_releases_each_candidate(self, training_data):
        """Test every candidate model is released exactly once."""
        candidates = ({'name': 'A', 'units': 4}, {'name': 'B', 'units': 8}, {'name': 'C', 'units': 12})
        with patch('cfo_forecast.domains.forecasting.ml.trainer.release_model') as mock_release:
            architecture_search(training_data.X, training_data.y,
                                candidates=candidates, short_epochs=1)
        assert mock_release.call_count == 3

    def test_ties_go_to_first_candidate(self, training_data):
        """Test equal losses keep the earlier candidate."""
        fixed = TrainingRun(history=[EpochMetrics(epoch=1, loss=0.25, mae=0.1, accuracy=50.0)])
        candidates = ({'name': 'First', 'units': 4}, {'name': 'Second', 'units': 8})
        with patch('cfo_forecast.domains.forecasting.ml.trainer.train_model', return_value=fixed):
            result = architecture_search(training_data.X, training_data.y, candidates=candidates)
        assert result.best.name == 'First'

    def test_on_candidate_called(self, training_data):
        """Test the candidate callback receives each CandidateResult."""
        reported = []
        architecture_search(training_data.X, training_data.y,
                            candidates=({'name': 'Only', 'units': 4},), short_epochs=1,
                            on_candidate=reported.append)
        assert len(reported) == 1
        assert isinstance(reported[0], CandidateResult)

    def test_cancel_during_search(self, training_data):
        """Test a cancelled token aborts the search."""
        token = CancellationToken()
        token.cancel()
        with pytest.raises(TrainingCancelledError):
            architecture_search(training_data.X, training_data.y, short_epochs=2, cancel_token=token)
