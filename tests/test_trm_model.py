# tests/test_trm_model.py

import pytest
import torch

from trm.core.exceptions import InvalidTokenError, ShapeMismatchError
from trm.core.layers import ReasoningBlock
from trm.core.tensor import Tensor
from trm.core.types import (
    TRMConfig,
    chess_config,
    default_config,
    maze_config,
    sudoku_config,
    validate_config,
)
from trm.models.trm_model import RecursiveReasoningModel, make_generator


def pattern_init(rows, cols, std, generator):
    """Deterministic weights: a repeating ramp scaled by std."""
    values = [((i * 7) % 11 - 5) / 5.0 * std for i in range(rows * cols)]
    return Tensor.from_values(rows, cols, values)


class TestConfig:
    """Unit tests for configuration presets and validation."""

    def test_sudoku_preset(self):
        config = sudoku_config()
        assert (config.vocab_size, config.seq_len) == (12, 81)
        assert (config.l_cycles, config.h_cycles) == (6, 3)

    def test_maze_preset(self):
        config = maze_config()
        assert (config.vocab_size, config.seq_len) == (4, 225)
        assert (config.l_cycles, config.h_cycles) == (4, 3)

    def test_chess_preset(self):
        config = chess_config()
        assert (config.vocab_size, config.seq_len) == (13, 64)
        assert config.position_encoding == 'chess'
        validate_config(config)

    def test_preset_overrides(self):
        config = sudoku_config(hidden_size=32, use_mlp_t=False)
        assert config.hidden_size == 32
        assert not config.use_mlp_t
        assert default_config().hidden_size == 256

    @pytest.mark.parametrize("field, value", [
        ('hidden_size', 0),
        ('h_cycles', -1),
        ('l_cycles', 0),
        ('l_layers', 0),
        ('vocab_size', 0),
        ('seq_len', 0),
        ('expansion', 0.0),
        ('token_policy', 'clamp'),
        ('position_encoding', 'rope'),
    ])
    def test_invalid_config(self, tiny_config, field, value):
        with pytest.raises(ValueError):
            RecursiveReasoningModel(tiny_config._replace(**{field: value}))

    def test_chess_encoding_requires_64_cells(self, tiny_config):
        with pytest.raises(ValueError):
            validate_config(tiny_config._replace(position_encoding='chess'))


class TestRecursiveReasoningModel:
    """Unit tests for the recursive scheduler."""

    def test_initialization(self, tiny_config):
        model = RecursiveReasoningModel(tiny_config)
        hidden = tiny_config.hidden_size

        assert model.embed_tokens.shape == (tiny_config.vocab_size, hidden)
        assert model.lm_head.shape == (hidden, tiny_config.vocab_size)
        assert model.from_head.shape == (hidden, tiny_config.seq_len)
        assert model.to_head.shape == (hidden, tiny_config.seq_len)
        assert model.h_init.shape == (1, hidden)
        assert model.position_embed is None
        assert model.coarse_state().shape == (tiny_config.seq_len, hidden)
        assert model.fine_state().shape == (tiny_config.seq_len, hidden)
        assert (model.current_h, model.current_l, model.total_steps) == (0, 0, 0)
        assert not model.is_complete()

    def test_single_shared_block_list(self, tiny_config):
        model = RecursiveReasoningModel(tiny_config)
        blocks = [m for m in model.modules() if isinstance(m, ReasoningBlock)]
        assert len(blocks) == tiny_config.l_layers
        assert len(model.l_layers) == tiny_config.l_layers

    def test_initial_states_are_broadcast(self, tiny_config):
        model = RecursiveReasoningModel(tiny_config)
        z_h = model.coarse_state().data
        z_l = model.fine_state().data
        assert torch.equal(z_h, model.h_init.expand_as(z_h))
        assert torch.equal(z_l, model.l_init.expand_as(z_l))

    def test_forward_output(self, tiny_config, sample_tokens):
        model = RecursiveReasoningModel(tiny_config)
        output = model(sample_tokens)
        assert len(output) == tiny_config.seq_len
        assert all(0 <= v < tiny_config.vocab_size for v in output)
        assert model.is_complete()
        assert model.total_steps == tiny_config.h_cycles * tiny_config.l_cycles

    def test_same_seed_same_output(self, tiny_config, sample_tokens):
        a = RecursiveReasoningModel(tiny_config)
        b = RecursiveReasoningModel(tiny_config)
        assert a(sample_tokens) == b(sample_tokens)
        assert a.coarse_state() == b.coarse_state()

    def test_different_seeds_differ(self):
        config = sudoku_config(hidden_size=32, h_cycles=1, l_cycles=2)
        tokens = [i % 10 for i in range(81)]
        a = RecursiveReasoningModel(config, make_generator(1))
        b = RecursiveReasoningModel(config, make_generator(2))
        out_a, out_b = a(tokens), b(tokens)
        assert len(out_a) == len(out_b) == 81
        assert all(0 <= v < 12 for v in out_a + out_b)
        assert out_a != out_b

    def test_forward_resets_state(self, tiny_config, sample_tokens):
        model = RecursiveReasoningModel(tiny_config)
        first = model(sample_tokens)
        state = model.coarse_state()
        second = model(sample_tokens)
        assert first == second
        assert state == model.coarse_state()

    def test_batch_incremental_equivalence(self, tiny_config, sample_tokens):
        model = RecursiveReasoningModel(tiny_config)
        expected = model(sample_tokens)
        expected_state = model.coarse_state()

        model.reset()
        num_calls = tiny_config.h_cycles * tiny_config.l_cycles + tiny_config.h_cycles
        phases = [model.step(sample_tokens).phase for _ in range(num_calls)]

        assert model.is_complete()
        assert model.current_output() == expected
        assert model.coarse_state() == expected_state
        canonical = (['inner'] * tiny_config.l_cycles + ['outer']) * tiny_config.h_cycles
        assert phases == canonical

    def test_equivalence_without_mixing(self, tiny_config, sample_tokens):
        config = tiny_config._replace(use_mlp_t=False, l_layers=1)
        model = RecursiveReasoningModel(config)
        expected = model(sample_tokens)
        model.reset()
        while not model.is_complete():
            model.step(sample_tokens)
        assert model.current_output() == expected

    def test_step_counters(self, tiny_config, sample_tokens):
        model = RecursiveReasoningModel(tiny_config)
        for i in range(tiny_config.l_cycles):
            result = model.step(sample_tokens)
            assert (result.h_step, result.l_step, result.total_steps) == (0, i + 1, i + 1)
            assert 0.0 <= result.confidence <= 1.0

        result = model.step(sample_tokens)
        assert result.phase == 'outer'
        assert (result.h_step, result.l_step) == (1, 0)
        assert result.total_steps == tiny_config.l_cycles

    def test_step_after_completion_is_noop(self, tiny_config, sample_tokens):
        model = RecursiveReasoningModel(tiny_config)
        model(sample_tokens)
        state = model.coarse_state()
        fine = model.fine_state()
        result = model.step(sample_tokens)
        assert result.phase == 'complete'
        assert result.h_step == tiny_config.h_cycles
        assert model.coarse_state() == state
        assert model.fine_state() == fine

    def test_state_accessors_return_copies(self, tiny_config, sample_tokens):
        model = RecursiveReasoningModel(tiny_config)
        model(sample_tokens)
        coarse = model.coarse_state()
        fine = model.fine_state()
        output = model.current_output()

        model.coarse_state().data.mul_(0.0)
        model.fine_state().data.mul_(0.0)

        assert model.coarse_state() == coarse
        assert model.fine_state() == fine
        assert model.coarse_state().abs_mean() > 0.0
        assert model.current_output() == output

    def test_step_result_samples(self, tiny_config, sample_tokens):
        model = RecursiveReasoningModel(tiny_config)
        result = model.step(sample_tokens)
        assert len(result.z_h_sample) == 64
        assert len(result.z_l_sample) == 64
        assert result.z_l_sample == model.fine_state().values()[:64]
        assert result.stats.min <= result.stats.max

    def test_forward_callbacks(self, tiny_config, sample_tokens):
        model = RecursiveReasoningModel(tiny_config)
        seen_a, seen_b = [], []
        model(sample_tokens, callbacks=[seen_a.append, seen_b.append])
        expected = tiny_config.h_cycles * (tiny_config.l_cycles + 1)
        assert len(seen_a) == len(seen_b) == expected
        assert seen_a[-1].phase == 'outer'
        assert seen_a[-1].h_step == tiny_config.h_cycles

    def test_step_callback(self, tiny_config, sample_tokens):
        model = RecursiveReasoningModel(tiny_config)
        seen = []
        result = model.step(sample_tokens, callback=seen.append)
        assert seen == [result]

    def test_reset(self, tiny_config, sample_tokens):
        model = RecursiveReasoningModel(tiny_config)
        initial = model.coarse_state()
        model(sample_tokens)
        model.reset()
        assert model.coarse_state() == initial
        assert (model.current_h, model.current_l, model.total_steps) == (0, 0, 0)

    def test_input_length_mismatch(self, tiny_config, sample_tokens):
        model = RecursiveReasoningModel(tiny_config)
        with pytest.raises(ShapeMismatchError):
            model(sample_tokens[:-1])
        with pytest.raises(ShapeMismatchError):
            model.step(sample_tokens + [0])

    def test_out_of_range_token_rejected(self, tiny_config, sample_tokens):
        model = RecursiveReasoningModel(tiny_config)
        tokens = list(sample_tokens)
        tokens[0] = tiny_config.vocab_size
        with pytest.raises(InvalidTokenError):
            model(tokens)
        tokens[0] = -1
        with pytest.raises(InvalidTokenError):
            model(tokens)

    def test_out_of_range_token_ignored(self, tiny_config, sample_tokens):
        model = RecursiveReasoningModel(tiny_config._replace(token_policy='ignore'))
        tokens = list(sample_tokens)
        tokens[0] = tiny_config.vocab_size + 3
        embedded = model.embed(tokens)
        assert embedded.row(0) == [0.0] * tiny_config.hidden_size
        assert len(model(tokens)) == tiny_config.seq_len

    def test_embedding_scale(self, tiny_config, sample_tokens):
        model = RecursiveReasoningModel(tiny_config)
        embedded = model.embed(sample_tokens)
        scale = tiny_config.hidden_size ** 0.5
        expected = model.embed_tokens[sample_tokens[3]] * scale
        assert torch.allclose(embedded.data[3], expected)

    def test_grid_position_encoding(self, tiny_config, sample_tokens):
        model = RecursiveReasoningModel(tiny_config._replace(position_encoding='grid'))
        assert model.position_embed.shape == (tiny_config.seq_len, tiny_config.hidden_size)
        embedded = model.embed(sample_tokens)
        scale = tiny_config.hidden_size ** 0.5
        expected = (model.embed_tokens[sample_tokens[4]] + model.position_embed[4]) * scale
        assert torch.allclose(embedded.data[4], expected, atol=1e-5)

    def test_deterministic_pattern_scenario(self):
        config = TRMConfig(
            hidden_size=4,
            expansion=2.0,
            h_cycles=1,
            l_cycles=1,
            l_layers=1,
            vocab_size=3,
            seq_len=2,
        )
        model = RecursiveReasoningModel(config, init_fn=pattern_init)
        output = model([0, 1])
        assert len(output) == 2
        assert all(0 <= v < 3 for v in output)

        again = RecursiveReasoningModel(config, init_fn=pattern_init)
        assert again([0, 1]) == output

    def test_current_output_in_progress(self, tiny_config, sample_tokens):
        model = RecursiveReasoningModel(tiny_config)
        before = model.current_output()
        assert len(before) == tiny_config.seq_len
        model.step(sample_tokens)
        assert len(model.current_output()) == tiny_config.seq_len

    def test_logits_and_confidence(self, tiny_config, sample_tokens):
        model = RecursiveReasoningModel(tiny_config)
        model(sample_tokens)
        assert model.logits().shape == (tiny_config.seq_len, tiny_config.vocab_size)
        confidence = model.confidence()
        expected = torch.sigmoid(model.coarse_state().data.abs().mean())
        assert confidence == pytest.approx(float(expected), abs=1e-6)

    def test_predict_moves(self, tiny_config, sample_tokens):
        model = RecursiveReasoningModel(tiny_config)
        model(sample_tokens)
        moves = model.predict_moves(sample_tokens)
        assert len(moves) == 10
        assert sum(m.confidence for m in moves) == pytest.approx(1.0, abs=1e-4)
        assert all(sample_tokens[m.source] != 0 for m in moves)
