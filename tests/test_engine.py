"""Tests for the evolution engine and its configuration."""

import json

import numpy as np
import pytest

from active_contours.evolution import (
    ActiveContours,
    EvolutionConfig,
    EvolutionResult,
    boundaries_from_labels,
    load_evolution_config,
    process_evolution_batch,
    save_evolution_config
)
from active_contours.geometry import BoundaryConfig, Polygon, Surface, TopologyStatus

from .conftest import densify, octahedron_mesh


def quiet_config(**overrides):
    params = dict(internal_weight=0.0, region_weight=0.0, coupling=False)
    params.update(overrides)
    return EvolutionConfig(**params)


def test_internal_force_shrinks_circle():
    circle = Polygon.from_ellipse((32, 32), (10, 10), BoundaryConfig(resolution=1.0))
    area = circle.dimension(2)
    engine = ActiveContours(np.zeros((64, 64)), [circle], quiet_config(internal_weight=0.5))

    result = engine.run(max_iterations=20)

    assert result.iterations == 20
    assert not result.converged
    assert len(result.boundaries) == 1
    assert result.boundaries[0].dimension(2) < area


def test_region_force_grows_into_bright_disk():
    yy, xx = np.mgrid[:64, :64]
    image = ((xx - 32) ** 2 + (yy - 32) ** 2 < 12 ** 2).astype(float)
    seed = Polygon.from_ellipse((32, 32), (6, 6), BoundaryConfig(resolution=1.0))
    area = seed.dimension(2)

    engine = ActiveContours(image, [seed], EvolutionConfig(internal_weight=0.05, max_iterations=30))
    result = engine.run()

    grown = result.get_measures(2)[0]
    assert grown > 1.5 * area
    assert grown < np.pi * 13 ** 2

    mask = result.get_masks(image.shape)[0]
    assert mask[32, 32]
    assert not mask[2, 2]


def test_vanishing_boundary_notifies_listener():
    events = []
    small = Polygon.from_rectangle((10, 10), (3, 3), BoundaryConfig(resolution=1.0, min_area=10.0))
    engine = ActiveContours(np.zeros((32, 32)), [small], quiet_config(), listener=events.append)

    result = engine.run(max_iterations=10)

    assert [event.status for event in events] == [TopologyStatus.VANISHED]
    assert events[0].parent is small
    assert result.boundaries == []
    assert result.iterations == 1
    assert result.topology_events == 1
    assert not result.converged


def test_split_replaces_parent_by_children(dumbbell):
    events = []
    polygon = Polygon.from_outline(dumbbell, BoundaryConfig(resolution=1.0, min_area=10.0))
    engine = ActiveContours(np.zeros((20, 30)), [polygon], quiet_config(), listener=events.append)

    engine.step()

    assert len(events) == 1
    assert events[0].status is TopologyStatus.SPLIT
    assert engine.boundaries == events[0].children
    assert polygon not in engine.boundaries


def test_coupling_runs_feedback_tests(square_10):
    config = BoundaryConfig(resolution=1.0)
    first = Polygon.from_outline(densify(square_10), config)
    second = Polygon.from_outline(densify(square_10) + [5.0, 0.5], config)
    engine = ActiveContours(np.zeros((20, 30)), [first, second], quiet_config(coupling=True))

    tests = engine.compute_forces()

    assert tests > 0
    assert np.abs(first.feedback_forces).sum() > 0
    assert np.abs(second.feedback_forces).sum() > 0


def test_convergence_stops_run(square_10):
    config = BoundaryConfig(resolution=1.0, window_size=5)
    square = Polygon.from_outline(square_10, config)
    square.resample()
    engine = ActiveContours(np.zeros((20, 20)), [square], quiet_config(max_iterations=100))

    result = engine.run()

    assert result.converged
    assert result.iterations == 5
    assert "converged" in str(result)


def test_edge_field_is_cached():
    image = np.zeros((16, 16))
    image[4:12, 4:12] = 1.0
    seed = Polygon.from_ellipse((8, 8), (5, 5), BoundaryConfig(resolution=1.0))
    engine = ActiveContours(image, [seed], quiet_config(edge_weight=1.0))

    engine.step()

    assert engine.edge_field.shape == (2, 16, 16)
    assert engine.edge_field is engine.edge_field


def test_surface_balloon_inflates():
    vertices, faces = octahedron_mesh(4.0, center=(8.0, 8.0, 8.0))
    surface = Surface.from_mesh(vertices, faces, BoundaryConfig(resolution=4.0, min_area=1.0))
    volume = surface.dimension(2)
    engine = ActiveContours(np.zeros((16, 16, 16)), [surface], quiet_config(balloon_weight=0.2))

    result = engine.run(max_iterations=3)

    assert result.iterations == 3
    assert result.boundaries[0].dimension(2) > volume


def test_dimension_mismatch_is_rejected(square_10):
    polygon = Polygon.from_outline(square_10, BoundaryConfig())
    with pytest.raises(ValueError):
        ActiveContours(np.zeros((8, 8, 8)), [polygon])
    with pytest.raises(ValueError):
        ActiveContours(np.zeros(8), [])
    with pytest.raises(ValueError):
        ActiveContours(np.zeros((8, 8)), [], field=np.ones((4, 4), dtype=bool))


def test_config_validation_and_json(tmp_path):
    with pytest.raises(ValueError):
        EvolutionConfig(time_step=0.0)
    with pytest.raises(ValueError):
        EvolutionConfig.from_dict({'internal_weight': 0.1, 'unknown': 1})

    path = tmp_path / "params.json"
    path.write_text(json.dumps({'internal_weight': 0.2, 'max_iterations': 5, 'coupling': False}))
    config = load_evolution_config(path)
    assert config.internal_weight == 0.2
    assert config.max_iterations == 5
    assert config.coupling is False
    assert config.region_weight == EvolutionConfig().region_weight

    saved = tmp_path / "out" / "saved.json"
    save_evolution_config(config, saved)
    assert load_evolution_config(saved) == config

    with pytest.raises(FileNotFoundError):
        load_evolution_config(tmp_path / "missing.json")
    (tmp_path / "list.json").write_text("[1, 2]")
    with pytest.raises(ValueError):
        load_evolution_config(tmp_path / "list.json")


def test_process_evolution_batch():
    image = np.zeros((40, 40))
    image[12:28, 12:28] = 1.0
    mask = image > 0

    results = process_evolution_batch(
        {'block': image}, {'block': mask}, EvolutionConfig(max_iterations=3)
    )

    assert set(results) == {'block'}
    assert isinstance(results['block'], EvolutionResult)
    assert results['block'].iterations == 3
    assert len(results['block'].boundaries) == 1

    with pytest.raises(ValueError):
        process_evolution_batch({'a': image}, {'b': mask})
    with pytest.raises(ValueError):
        process_evolution_batch({'a': image}, {'a': mask[:10]})


def test_boundaries_from_labels():
    labels = np.zeros((40, 60), dtype=int)
    labels[5:20, 5:20] = 1
    labels[10:30, 35:55] = 2
    polygons = boundaries_from_labels(labels, BoundaryConfig(resolution=1.0))

    assert [type(b) for b in polygons] == [Polygon, Polygon]
    assert polygons[0].mass_center()[0] < polygons[1].mass_center()[0]

    volume = np.zeros((12, 12, 12), dtype=bool)
    volume[3:9, 3:9, 3:9] = True
    surfaces = boundaries_from_labels(volume, BoundaryConfig(resolution=2.0))

    assert len(surfaces) == 1
    assert isinstance(surfaces[0], Surface)
    assert surfaces[0].dimension(2) > 50

    with pytest.raises(ValueError):
        boundaries_from_labels(np.zeros(5), BoundaryConfig())
