"""
Unit and regression test for the ssrmsd package.
"""

import copy
import inspect
import io
import logging
import sys
from importlib import resources

import numpy as np
import openmm
import pytest
from openmm import app, unit
from scipy.spatial.transform import Rotation

import ssrmsd
from ssrmsd import alignment, serialization
from ssrmsd.aggregation import (
    AltMinimum,
    Highest,
    Lowest,
    SoftMinimum,
    SwitchingMean,
    SwitchingSum,
)
from ssrmsd.chain_segmenter import segmentChains
from ssrmsd.errors import ConfigurationError, GeometryError
from ssrmsd.pbc import make_whole, validate_box_vectors
from ssrmsd.switching_function import RationalSwitchingFunction
from ssrmsd.utils import compute_effective_mass
from ssrmsd.window_generator import countWindows, generateWindows

ROTATION = Rotation.from_rotvec([0.3, -1.1, 0.7])
SHIFT = np.array([0.4, -1.3, 2.2])


def random_points(numPoints: int, seed: int, scale: float = 0.3) -> np.ndarray:
    """
    Generate a reproducible cloud of points.

    """
    return scale * np.random.default_rng(seed).normal(size=(numPoints, 3))


def random_chain(numAtoms: int, seed: int, bondLength: float = 0.15) -> np.ndarray:
    """
    Generate a reproducible random walk with fixed step length.

    """
    steps = np.random.default_rng(seed).normal(size=(numAtoms - 1, 3))
    steps *= bondLength / np.linalg.norm(steps, axis=1, keepdims=True)
    return np.vstack([np.zeros(3), np.cumsum(steps, axis=0)])


def finite_difference_gradient(function, coords: np.ndarray, h: float = 1e-6):
    """
    Compute the gradient of a scalar function by central finite differences.

    """
    gradient = np.zeros_like(coords)
    for index in np.ndindex(*coords.shape):
        forward = coords.copy()
        backward = coords.copy()
        forward[index] += h
        backward[index] -= h
        gradient[index] = (function(forward) - function(backward)) / (2 * h)
    return gradient


def helix_template() -> ssrmsd.ReferenceTemplate:
    """
    The alpha_plus_cis peptoid template.

    """
    return ssrmsd.getTemplate("alpha_plus_cis")


def matching_chain(shift: float = 10.0) -> np.ndarray:
    """
    A chain of five residues whose first window matches the template exactly and
    whose other windows are far from matching it.

    """
    reference = helix_template().getPositions()
    positions = np.zeros((25, 3))
    positions[:15] = reference
    positions[15:] = reference[5:] + [shift, 0.0, 0.0]
    return positions


def window_proxy(coords: np.ndarray) -> float:
    """
    Distance between the centroids of the two halves of a window.

    """
    half = len(coords) // 2
    return float(
        np.linalg.norm(coords[:half].mean(axis=0) - coords[half:].mean(axis=0))
    )


def test_ssrmsd_imported():
    """
    Sample test, will always pass so long as import statement worked.

    """
    assert "ssrmsd" in sys.modules


@pytest.mark.parametrize("numResidues", [2, 3, 4, 5, 9])
def test_window_count(numResidues: int):
    """
    Test the number and placement of windows along a chain.

    """
    assert countWindows(numResidues, 3) == max(0, numResidues - 2)
    if numResidues < 3:
        return
    chains = segmentChains([range(5 * numResidues)], 5, 15)
    windows = generateWindows(chains, 5, 15)
    assert len(windows) == numResidues - 2
    assert [window.residueOffset for window in windows] == list(
        range(numResidues - 2)
    )
    for window in windows:
        first = 5 * window.residueOffset
        assert window.atoms == tuple(range(first, first + 15))


def test_windows_do_not_cross_chains():
    """
    Test that windows are enumerated chain by chain and never mix chains.

    """
    chains = segmentChains([range(100, 125), range(15)], 5, 15)
    windows = generateWindows(chains, 5, 15)
    assert [(w.chainIndex, w.residueOffset) for w in windows] == [
        (0, 0),
        (0, 1),
        (0, 2),
        (1, 0),
    ]
    assert windows[-1].atoms == tuple(range(15))
    assert [w.start for w in windows] == [0, 5, 10, 25]


@pytest.mark.parametrize(
    "chains, message",
    [
        ([], "At least one backbone chain"),
        ([range(15), []], "Chain 2 is empty"),
        ([range(17)], "Chain 1 has 17 atoms, which is not a multiple of 5"),
        ([range(10)], "at least 15 are needed"),
        ([list(range(14)) + [0]], "Chain 1 contains repeated atoms"),
        ([[-1] + list(range(14))], "Chain 1 contains negative atom indices"),
        ([[0, 2.7] + list(range(3, 16))], "neither residues nor integer atom"),
        ([range(15), [True] + list(range(20, 34))], "Chain 2 contains items"),
    ],
)
def test_chain_validation(chains, message):
    """
    Test that invalid chains are rejected at construction.

    """
    with pytest.raises(ConfigurationError, match=message):
        ssrmsd.SecondaryStructureRMSD(chains, helix_template())


def test_rigid_transform_of_reference():
    """
    Test that rigid-body copies of the reference are exact matches for the
    optimal and drmsd alignments, but not for the simple one.

    """
    reference = helix_template().getPositions()
    transformed = ROTATION.apply(reference.copy()) + SHIFT
    for alignmentType in [alignment.optimal, alignment.drmsd]:
        aligner = alignment.Aligner(reference, alignmentType)
        assert aligner.align(transformed).distance == pytest.approx(0.0, abs=1e-6)
    aligner = alignment.Aligner(reference, alignment.simple)
    assert aligner.align(reference + SHIFT).distance == pytest.approx(0.0, abs=1e-6)
    assert aligner.align(transformed).distance > 1e-2


def test_invariances():
    """
    Test that drmsd is invariant under rigid motions and that the simple alignment
    is invariant under translations only.

    """
    reference = random_points(15, 1)
    coords = reference + random_points(15, 2, 0.1)
    moved = ROTATION.apply(coords) + SHIFT
    drmsd = alignment.Aligner(reference, alignment.drmsd, bondLength=0.0)
    assert drmsd.align(moved).distance == pytest.approx(drmsd.align(coords).distance)
    simple = alignment.Aligner(reference, alignment.simple)
    original = simple.align(coords).distance
    assert simple.align(coords + SHIFT).distance == pytest.approx(original)
    assert simple.align(ROTATION.apply(coords)).distance != pytest.approx(original)


def test_optimal_rmsd():
    """
    Test the optimal alignment against SciPy's Kabsch solution.

    """
    reference = random_points(15, 3)
    coords = ROTATION.apply(reference + random_points(15, 4, 0.1)) + SHIFT
    result = alignment.Aligner(reference, alignment.optimal).align(coords)
    _, rssd = Rotation.align_vectors(
        coords - coords.mean(axis=0), reference - reference.mean(axis=0)
    )
    assert result.distance == pytest.approx(rssd / np.sqrt(15))
    assert not result.degenerate


def test_optimal_alignment_never_reflects():
    """
    Test that a mirror image of the reference, which has the same interatomic
    distances, does not match it under the optimal alignment.

    """
    reference = helix_template().getPositions()
    mirrored = reference * [-1.0, 1.0, 1.0]
    drmsd = alignment.Aligner(reference, alignment.drmsd)
    assert drmsd.align(mirrored).distance == pytest.approx(0.0, abs=1e-6)
    optimal = alignment.Aligner(reference, alignment.optimal)
    result = optimal.align(mirrored)
    assert result.distance > 1e-2
    _, rssd = Rotation.align_vectors(
        mirrored - mirrored.mean(axis=0), reference - reference.mean(axis=0)
    )
    assert result.distance == pytest.approx(rssd / np.sqrt(15))


@pytest.mark.parametrize(
    "alignmentType, weighted",
    [
        (alignment.optimal, False),
        (alignment.optimal, True),
        (alignment.simple, False),
        (alignment.simple, True),
        (alignment.drmsd, False),
    ],
)
def test_alignment_derivatives(alignmentType: alignment.AlignmentType, weighted: bool):
    """
    Test the analytic derivatives of every alignment type against finite
    differences.

    """
    reference = random_points(15, 5)
    weights = np.linspace(1.0, 3.0, 15) if weighted else None
    aligner = alignment.Aligner(reference, alignmentType, weights, bondLength=0.17)
    for seed in range(3):
        coords = ROTATION.apply(reference) + random_points(15, 10 + seed, 0.1)
        result = aligner.align(coords)
        expected = finite_difference_gradient(
            lambda x: aligner.align(x).distance, coords
        )
        assert result.derivatives == pytest.approx(expected, rel=1e-4, abs=1e-8)
        assert result.virial == pytest.approx(-coords.T @ result.derivatives)


@pytest.mark.parametrize("alignmentType", [alignment.optimal, alignment.drmsd])
def test_virial_is_symmetric(alignmentType: alignment.AlignmentType):
    """
    Test that rotation-invariant distances have symmetric virials.

    """
    reference = random_points(15, 6)
    coords = reference + random_points(15, 7, 0.1)
    virial = alignment.Aligner(reference, alignmentType).align(coords).virial
    assert virial == pytest.approx(virial.T, abs=1e-10)


def test_degenerate_alignment():
    """
    Test the zero-gradient fallback for an exact match.

    """
    reference = helix_template().getPositions()
    for alignmentType in [alignment.optimal, alignment.simple, alignment.drmsd]:
        result = alignment.Aligner(reference, alignmentType).align(reference)
        assert result.degenerate
        assert np.all(result.derivatives == 0)
        assert np.all(result.virial == 0)


def test_alignment_configuration_errors():
    """
    Test that invalid aligner settings are rejected.

    """
    reference = random_points(15, 8)
    with pytest.raises(ConfigurationError, match="cannot be used with the drmsd"):
        alignment.Aligner(reference, alignment.drmsd, np.ones(15))
    with pytest.raises(ConfigurationError, match="Exactly 15 positive atom weights"):
        alignment.Aligner(reference, alignment.optimal, np.ones(14))
    with pytest.raises(ConfigurationError, match="No atom pair"):
        alignment.Aligner(reference, alignment.drmsd, bondLength=100.0)
    with pytest.raises(ConfigurationError, match="Unknown alignment type"):
        alignment.AlignmentType("rotational")


def test_switching_function():
    """
    Test the values and derivatives of the rational switching function.

    """
    function = RationalSwitchingFunction(0.1, 0.05, 6, 12)
    values, derivatives = function([0.0, 0.05, 0.15, 1.0e6])
    assert values[:2] == pytest.approx([1.0, 1.0])
    assert derivatives[:2] == pytest.approx([0.0, 0.0])
    assert values[2] == pytest.approx(0.5)
    assert derivatives[2] == pytest.approx(6 * (6 - 12) / (2 * 12 * 0.1))
    assert values[3] == pytest.approx(0.0, abs=1e-12)
    assert np.all(np.isfinite(derivatives))

    distances = np.array([0.06, 0.1, 0.149, 0.151, 0.2, 0.4, 3.0])
    _, derivatives = function(distances)
    h = 1e-7
    expected = (function(distances + h)[0] - function(distances - h)[0]) / (2 * h)
    assert derivatives == pytest.approx(expected, rel=1e-4, abs=1e-8)

    steep = RationalSwitchingFunction(0.08, 0.0, 64, 128)
    values, derivatives = steep([50.0, 1.0e3])
    assert np.all(np.isfinite(values)) and np.all(np.isfinite(derivatives))


@pytest.mark.parametrize(
    "args, message",
    [
        ((0.0,), "r0 must be positive"),
        ((0.1, -0.1), "d0 cannot be negative"),
        ((0.1, 0.0, 0, 12), "exponents must be positive"),
    ],
)
def test_switching_function_errors(args, message):
    """
    Test that invalid switching parameters are rejected.

    """
    with pytest.raises(ConfigurationError, match=message):
        RationalSwitchingFunction(*args)


def test_switching_sum_approaches_hard_count():
    """
    Test that a switching sum converges to a hard count as the exponents grow.

    """
    distances = np.array([0.01, 0.03, 0.06, 0.11, 0.2, 0.5])
    active = np.ones(len(distances), dtype=bool)
    hard_values = (distances < 0.08).astype(float)
    errors = []
    for n in [4, 8, 16, 32, 64]:
        function = RationalSwitchingFunction(0.08, 0.0, n, 2 * n)
        values, _ = function(distances)
        errors.append(np.sum(np.abs(values - hard_values)))
        value, _ = SwitchingSum()(distances, function, active)
    assert all(later < earlier for earlier, later in zip(errors, errors[1:]))
    assert value == pytest.approx(np.sum(hard_values), abs=1e-3)


@pytest.mark.parametrize(
    "aggregate",
    [
        SwitchingSum(),
        SwitchingMean(RationalSwitchingFunction(0.2, 0.0, 6, 12)),
        SoftMinimum(beta=0.5),
        AltMinimum(beta=20.0),
        Lowest(),
        Highest(),
    ],
)
def test_aggregate_derivatives(aggregate: ssrmsd.Aggregate):
    """
    Test the derivatives of every aggregate with respect to the window distances.

    """
    function = RationalSwitchingFunction(0.08)
    distances = np.array([0.31, 0.05, 0.12, 0.07, 0.22])
    active = np.ones(len(distances), dtype=bool)
    _, derivatives = aggregate(distances, function, active)
    expected = finite_difference_gradient(
        lambda d: aggregate(d, function, active)[0], distances
    )
    assert derivatives == pytest.approx(expected, rel=1e-4, abs=1e-8)


def test_aggregate_values():
    """
    Test the values of the aggregates, including ties and skipped windows.

    """
    function = RationalSwitchingFunction(0.08)
    distances = np.array([0.2, 0.1, 0.1, 0.3])
    active = np.ones(4, dtype=bool)
    value, derivatives = Lowest()(distances, function, active)
    assert value == 0.1 and list(derivatives) == [0.0, 1.0, 0.0, 0.0]
    value, derivatives = Highest()(distances, function, active)
    assert value == 0.3 and list(derivatives) == [0.0, 0.0, 0.0, 1.0]
    value, _ = SoftMinimum(beta=5.0)(distances, function, active)
    assert 0.0 < value < 0.1
    value, _ = AltMinimum(beta=100.0)(distances, function, active)
    assert value == pytest.approx(0.1 - np.log(2) / 100.0, rel=1e-3)
    value, derivatives = SoftMinimum(beta=5.0)(
        np.array([0.2, 0.0]), function, np.ones(2, dtype=bool)
    )
    assert value == 0.0 and np.all(derivatives == 0)

    partial = np.array([True, False, True, False])
    distances = np.array([0.0, np.nan, 0.0, np.nan])
    value, derivatives = SwitchingSum()(distances, function, partial)
    assert value == pytest.approx(2.0)
    value, derivatives = SwitchingMean()(distances, function, partial)
    assert value == pytest.approx(0.5)
    assert np.all(np.isfinite(derivatives))


@pytest.mark.parametrize(
    "aggregate, message",
    [
        (lambda: SoftMinimum(), "requires a positive beta"),
        (lambda: AltMinimum(beta=-1.0), "requires a positive beta"),
        (lambda: Lowest(label=""), "requires a label"),
    ],
)
def test_aggregate_errors(aggregate, message):
    """
    Test that aggregates with missing or invalid parameters are rejected.

    """
    with pytest.raises(ConfigurationError, match=message):
        aggregate()


def test_engine_configuration_errors():
    """
    Test that inconsistent collective variable settings are rejected.

    """
    template = helix_template()
    with pytest.raises(ConfigurationError, match="Duplicate output labels: sum"):
        ssrmsd.SecondaryStructureRMSD(
            [range(25)], template, aggregates=[SwitchingSum(), SwitchingSum()]
        )
    with pytest.raises(ConfigurationError, match="not with Lowest"):
        ssrmsd.SecondaryStructureRMSD(
            [range(25)], template, aggregates=[Lowest()], strandsCutoff=1.0
        )
    with pytest.raises(ConfigurationError, match="not with SoftMinimum"):
        ssrmsd.SecondaryStructureRMSD(
            [range(25)],
            template,
            aggregates=[SwitchingSum(), SoftMinimum(beta=1.0)],
            neighborListStride=5,
        )
    with pytest.raises(ConfigurationError, match="cannot be used with the drmsd"):
        ssrmsd.SecondaryStructureRMSD([range(25)], template, masses=np.ones(25))
    with pytest.raises(ConfigurationError, match="chains contain atom index 24"):
        ssrmsd.SecondaryStructureRMSD(
            [range(25)], template, alignment.optimal, masses=np.ones(20)
        )
    with pytest.raises(ConfigurationError, match="Unknown reference template"):
        ssrmsd.SecondaryStructureRMSD([range(25)], "beta_hairpin")
    with pytest.raises(ConfigurationError, match="At least one aggregate"):
        ssrmsd.SecondaryStructureRMSD([range(25)], template, aggregates=[])
    with pytest.raises(ConfigurationError, match="Unknown alignment type rotational"):
        ssrmsd.SecondaryStructureRMSD([range(25)], template, "rotational")
    with pytest.raises(ConfigurationError, match="Invalid alignment type 3"):
        ssrmsd.SecondaryStructureRMSD([range(25)], template, 3)
    with pytest.raises(ConfigurationError, match="strands cutoff must be a length"):
        ssrmsd.SecondaryStructureRMSD(
            [range(25)], template, strandsCutoff=1.0 * unit.dalton
        )


def test_alignment_type_by_name(caplog):
    """
    Test that alignment types can be given by name.

    """
    positions = random_chain(25, 23)
    with caplog.at_level(logging.INFO, logger="ssrmsd"):
        by_name = ssrmsd.SecondaryStructureRMSD([range(25)], helix_template(), "drmsd")
    assert "drmsd alignment" in caplog.text
    by_object = ssrmsd.SecondaryStructureRMSD(
        [range(25)], helix_template(), alignment.drmsd
    )
    assert by_name.getAlignmentType() == alignment.drmsd
    assert by_name.evaluate(positions).getValue() == pytest.approx(
        by_object.evaluate(positions).getValue()
    )
    assert copy.deepcopy(by_name).getAlignmentType() == alignment.drmsd
    simple = ssrmsd.SecondaryStructureRMSD([range(25)], helix_template(), "simple")
    assert simple.getAlignmentType() == alignment.simple


def test_end_to_end():
    """
    Test a chain whose first window nearly matches the template while the others
    are far from matching it.

    """
    template = helix_template()
    positions = matching_chain()
    positions[:15] += random_points(15, 9, 0.003)
    cv = ssrmsd.SecondaryStructureRMSD(
        [range(25)], template, aggregates=[SwitchingSum(), Lowest()]
    )
    output = cv.evaluate(positions)
    assert output.getOutputNames() == ["sum", "lowest"]
    assert output.getValue("sum") == pytest.approx(1.0, abs=1e-3)
    assert output.getValue("lowest") == pytest.approx(0.0, abs=0.02)
    assert np.argmin(output.getWindowDistances()) == 0

    cutoff = window_proxy(template.getPositions()) + 0.5
    assert all(
        window_proxy(positions[list(window.atoms)]) > cutoff
        for window in cv.getWindows()[1:]
    )
    filtered = ssrmsd.SecondaryStructureRMSD(
        [range(25)], template, strandsCutoff=cutoff * unit.nanometers
    )
    output = filtered.evaluate(positions)
    assert output.getValue() == pytest.approx(1.0, abs=1e-3)
    assert np.isnan(output.getWindowDistances()[1:]).all()
    gradient = output.getGradient(numAtoms=25)
    assert np.any(gradient[:15] != 0)
    assert np.all(gradient[15:] == 0)


def test_exact_match_warns_once(caplog):
    """
    Test that degenerate windows are reported only once.

    """
    cv = ssrmsd.SecondaryStructureRMSD([range(25)], helix_template())
    with caplog.at_level(logging.WARNING, logger="ssrmsd"):
        cv.evaluate(matching_chain())
        output = cv.evaluate(matching_chain())
    warnings = [
        r for r in caplog.records if "derivatives set to zero" in r.getMessage()
    ]
    assert len(warnings) == 1
    assert output.getNumDegenerateWindows() == 1
    assert output.getValue() == pytest.approx(1.0, abs=1e-6)


def test_construction_is_logged(caplog):
    """
    Test the summary logged when a collective variable is created.

    """
    with caplog.at_level(logging.INFO, logger="ssrmsd"):
        ssrmsd.SecondaryStructureRMSD(
            [range(25), range(30, 45)], helix_template(), name="helix"
        )
    assert "helix: 2 chain(s), 4 window(s), template alpha_plus_cis" in caplog.text


def test_shared_atoms():
    """
    Test that the derivative at atoms shared by overlapping windows is the sum of
    the contributions of every window.

    """
    template = helix_template()
    function = RationalSwitchingFunction(0.5)
    positions = random_chain(25, 11)
    cv = ssrmsd.SecondaryStructureRMSD(
        [range(25)], template, alignment.optimal, function
    )
    gradient = cv.evaluate(positions).getGradient(numAtoms=25)
    aligner = alignment.Aligner(template.getPositions(), alignment.optimal)
    expected = np.zeros((25, 3))
    contributions_to_atom_10 = []
    for window in cv.getWindows():
        atoms = list(window.atoms)
        result = aligner.align(positions[atoms])
        _, factor = function([result.distance])
        expected[atoms] += factor[0] * result.derivatives
        contributions_to_atom_10.append(factor[0] * result.derivatives[atoms.index(10)])
    assert len(contributions_to_atom_10) == 3
    assert gradient == pytest.approx(expected)
    assert gradient[10] == pytest.approx(np.sum(contributions_to_atom_10, axis=0))


@pytest.mark.parametrize(
    "alignmentType", [alignment.optimal, alignment.simple, alignment.drmsd]
)
def test_engine_derivatives(alignmentType: alignment.AlignmentType):
    """
    Test the derivatives of all outputs of a collective variable against finite
    differences.

    """
    aggregates = [
        SwitchingSum(),
        SwitchingMean(),
        SoftMinimum(beta=1.0),
        AltMinimum(beta=20.0),
        Lowest(),
        Highest(),
    ]
    cv = ssrmsd.SecondaryStructureRMSD(
        [range(25), range(25, 40)],
        helix_template(),
        alignmentType,
        RationalSwitchingFunction(0.5),
        aggregates,
    )
    positions = random_chain(40, 12)
    output = cv.evaluate(positions)
    for label in cv.getOutputNames():
        expected = finite_difference_gradient(
            lambda x, label=label: cv.evaluate(x).getValue(label), positions
        )
        gradient = output.getGradient(label, 40)
        assert gradient == pytest.approx(expected, rel=1e-4, abs=1e-8)


@pytest.mark.parametrize(
    "alignmentType", [alignment.optimal, alignment.simple, alignment.drmsd]
)
def test_engine_virial(alignmentType: alignment.AlignmentType):
    """
    Test that the virial of every output is minus the sum of the outer products
    of the positions and the derivatives, with and without periodic boundaries.

    """
    box = np.diag([2.0, 2.5, 3.0])
    positions = random_chain(40, 22) + [1.9, 2.4, 2.9]
    wrapped = positions - np.floor(positions / np.diag(box)) * np.diag(box)
    kwargs = dict(
        alignmentType=alignmentType,
        switchingFunction=RationalSwitchingFunction(0.5),
        aggregates=[
            SwitchingSum(),
            SwitchingMean(),
            SoftMinimum(beta=1.0),
            AltMinimum(beta=20.0),
            Lowest(),
            Highest(),
        ],
    )
    chains = [range(25), range(25, 40)]
    plain = ssrmsd.SecondaryStructureRMSD(chains, helix_template(), **kwargs)
    periodic = ssrmsd.SecondaryStructureRMSD(
        chains, helix_template(), pbc=True, **kwargs
    )
    output = plain.evaluate(positions)
    periodic_output = periodic.evaluate(wrapped, box)
    for label in plain.getOutputNames():
        virial = output.getVirial(label)
        assert virial.shape == (3, 3)
        expected = -positions.T @ output.getGradient(label, 40)
        assert virial == pytest.approx(expected, abs=1e-10)
        assert periodic_output.getVirial(label) == pytest.approx(expected, abs=1e-10)


def test_threads_give_the_same_result():
    """
    Test that evaluating windows on several threads does not change the result.

    """
    positions = random_chain(50, 13)
    kwargs = dict(
        alignmentType=alignment.optimal,
        switchingFunction=RationalSwitchingFunction(0.5),
        aggregates=[SwitchingSum(), Lowest()],
    )
    serial = ssrmsd.SecondaryStructureRMSD([range(50)], helix_template(), **kwargs)
    threaded = ssrmsd.SecondaryStructureRMSD(
        [range(50)], helix_template(), numThreads=4, **kwargs
    )
    output1 = serial.evaluate(positions)
    output2 = threaded.evaluate(positions)
    for label in ["sum", "lowest"]:
        assert output1.getValue(label) == output2.getValue(label)
        assert np.array_equal(
            output1.getDerivatives(label), output2.getDerivatives(label)
        )


def test_mass_weighting():
    """
    Test that uniform masses are equivalent to no weighting and that non-uniform
    masses change the result.

    """
    positions = random_chain(25, 14)
    kwargs = dict(
        alignmentType=alignment.optimal,
        aggregates=[Lowest()],
    )
    plain = ssrmsd.SecondaryStructureRMSD([range(25)], helix_template(), **kwargs)
    uniform = ssrmsd.SecondaryStructureRMSD(
        [range(25)], helix_template(), masses=[12.0] * 25, **kwargs
    )
    masses = unit.Quantity(np.tile([12.0, 16.0, 14.0, 12.0, 12.0], 5), unit.dalton)
    weighted = ssrmsd.SecondaryStructureRMSD(
        [range(25)], helix_template(), masses=masses, **kwargs
    )
    value = plain.evaluate(positions).getValue()
    assert uniform.evaluate(positions).getValue() == pytest.approx(value)
    assert weighted.evaluate(positions).getValue() != pytest.approx(value)

    weighted_value = weighted.evaluate(positions).getValue()
    pipe = io.StringIO()
    serialization.serialize(weighted, pipe)
    pipe.seek(0)
    for other in [serialization.deserialize(pipe), copy.deepcopy(weighted)]:
        assert other.evaluate(positions).getValue() == pytest.approx(weighted_value)


def test_periodic_boundary_conditions():
    """
    Test that windows split across the periodic boundaries are made whole.

    """
    box = np.diag([2.0, 2.5, 3.0])
    positions = random_chain(25, 15) + [1.9, 2.4, 2.9]
    wrapped = positions - np.floor(positions / np.diag(box)) * np.diag(box)
    kwargs = dict(
        alignmentType=alignment.optimal,
        switchingFunction=RationalSwitchingFunction(0.5),
    )
    reference = ssrmsd.SecondaryStructureRMSD([range(25)], helix_template(), **kwargs)
    periodic = ssrmsd.SecondaryStructureRMSD(
        [range(25)], helix_template(), pbc=True, **kwargs
    )
    parameters = inspect.signature(ssrmsd.SecondaryStructureRMSD).parameters
    assert parameters["pbc"].default is False
    expected = reference.evaluate(positions)
    output = periodic.evaluate(wrapped, unit.Quantity(box, unit.nanometers))
    assert output.getValue() == pytest.approx(expected.getValue())
    assert output.getDerivatives() == pytest.approx(expected.getDerivatives())

    with pytest.raises(GeometryError, match="require box vectors"):
        periodic.evaluate(wrapped)
    with pytest.raises(GeometryError, match="reduced"):
        periodic.evaluate(wrapped, [[2.0, 0.1, 0.0], [0.0, 2.0, 0.0], [0.0, 0.0, 2.0]])
    with pytest.raises(GeometryError, match="positive diagonal"):
        validate_box_vectors(np.diag([2.0, 0.0, 2.0]))
    with pytest.raises(GeometryError, match="nearest periodic image ambiguous"):
        make_whole(np.array([[0.0, 0.0, 0.0], [0.9, 0.9, 0.0]]), np.diag([2.0] * 3))


def test_invalid_positions():
    """
    Test that malformed positions are rejected at evaluation.

    """
    cv = ssrmsd.SecondaryStructureRMSD([range(25)], helix_template())
    positions = matching_chain()
    with pytest.raises(GeometryError, match="shape"):
        cv.evaluate(positions[:, :2])
    with pytest.raises(GeometryError, match="20 positions were given"):
        cv.evaluate(positions[:20])
    positions[3, 1] = np.nan
    with pytest.raises(GeometryError, match="Non-finite"):
        cv.evaluate(positions)


def test_neighbor_list():
    """
    Test that windows with negligible contributions are skipped between
    neighbor-list refreshes.

    """
    template = helix_template()
    reference = template.getPositions()
    first = matching_chain()
    second = np.zeros((25, 3))
    second[:5] = reference[:5] - [10.0, 0.0, 0.0]
    second[5:20] = reference
    second[20:] = reference[10:] + [10.0, 0.0, 0.0]

    cv = ssrmsd.SecondaryStructureRMSD([range(25)], template, neighborListStride=3)
    output = cv.evaluate(first)
    assert output.getValue() == pytest.approx(1.0, abs=1e-6)
    output = cv.evaluate(second)
    assert np.isnan(output.getWindowDistances()[1:]).all()
    assert output.getValue() == pytest.approx(0.0, abs=1e-6)
    cv.resetNeighborList()
    output = cv.evaluate(second)
    assert not np.isnan(output.getWindowDistances()).any()
    assert output.getValue() == pytest.approx(1.0, abs=1e-6)

    cv = ssrmsd.SecondaryStructureRMSD([range(25)], template, neighborListStride=2)
    cv.evaluate(first)
    cv.evaluate(second)
    output = cv.evaluate(second)
    assert output.getValue() == pytest.approx(1.0, abs=1e-6)


def test_templates():
    """
    Test the registry of reference templates.

    """
    names = ssrmsd.getTemplateNames()
    for name in ssrmsd.reference_template.PEPTOID_MOTIFS:
        assert name in names
        template = ssrmsd.getTemplate(name)
        assert template.getNumAtoms() == 15
        assert template.getResidueSize() == 5
        path = resources.files("ssrmsd").joinpath("data").joinpath(f"{name}.csv")
        angstroms = np.loadtxt(str(path), delimiter=",")
        assert template.getPositions() == pytest.approx(0.1 * angstroms)
        assert not template.getPositions().flags.writeable

    custom = ssrmsd.ReferenceTemplate("test_custom_motif", random_points(12, 16), 4)
    ssrmsd.registerTemplate(custom, overwrite=True)
    assert ssrmsd.getTemplate("test_custom_motif") is custom
    with pytest.raises(ConfigurationError, match="already registered"):
        ssrmsd.registerTemplate(custom)
    with pytest.raises(ConfigurationError, match="already registered"):
        ssrmsd.registerTemplate(
            ssrmsd.ReferenceTemplate("alpha_plus_cis", random_points(15, 17), 5)
        )


@pytest.mark.parametrize(
    "args, message",
    [
        (("empty", np.zeros((0, 3)), 5), "is empty"),
        (("flat", np.zeros((15, 2)), 5), "list of 3D points"),
        (("odd", np.zeros((14, 3)), 5), "not a multiple of 5"),
        (("names", np.zeros((15, 3)), 5, ["A", "B"]), "needs 5 atom names"),
    ],
)
def test_template_errors(args, message):
    """
    Test that invalid reference templates are rejected.

    """
    with pytest.raises(ConfigurationError, match=message):
        ssrmsd.ReferenceTemplate(*args)


def make_peptoid_topology(numResidues: int) -> app.Topology:
    """
    Create a topology of a single chain of peptoid residues, each one with a
    hydrogen atom placed before the backbone atoms.

    """
    topology = app.Topology()
    chain = topology.addChain()
    for _ in range(numResidues):
        residue = topology.addResidue("NSAR", chain)
        topology.addAtom("H", app.element.hydrogen, residue)
        for name in ssrmsd.reference_template.PEPTOID_BACKBONE_ATOMS:
            element = app.element.oxygen if name == "OL" else app.element.carbon
            topology.addAtom(name, element, residue)
    return topology


def test_residue_chains():
    """
    Test that backbone atoms are selected from residues by name.

    """
    topology = make_peptoid_topology(4)
    residues = list(topology.residues())
    cv = ssrmsd.SecondaryStructureRMSD([residues], "alpha_plus_cis")
    assert cv.getNumWindows() == 2
    expected = tuple(i for i in range(24) if i % 6 != 0)
    assert cv.getWindows()[0].chain.atoms == expected
    mixed = residues[:1] + list(range(24, 38))
    with pytest.raises(ConfigurationError, match="Chain 1 mixes residues"):
        ssrmsd.SecondaryStructureRMSD([mixed], "alpha_plus_cis")

    topology = app.Topology()
    chain = topology.addChain()
    residue = topology.addResidue("NSAR", chain)
    topology.addAtom("CLP", app.element.carbon, residue)
    with pytest.raises(ConfigurationError, match="Atom OL not found in residue NSAR"):
        ssrmsd.SecondaryStructureRMSD([list(topology.residues())], "alpha_plus_cis")


def test_serialization():
    """
    Test that collective variables and their components survive a YAML round trip.

    """
    topology = make_peptoid_topology(5)
    cv = ssrmsd.SecondaryStructureRMSD(
        [list(topology.residues())],
        "c7beta_plus_trans",
        alignment.optimal,
        RationalSwitchingFunction(0.1, 0.0, 6, 12),
        [SwitchingSum(), SwitchingMean(label="average")],
        strandsCutoff=1.2 * unit.nanometers,
        name="c7beta",
    )
    assert cv.yaml_tag.startswith("!ssrmsd.")
    pipe = io.StringIO()
    serialization.serialize(cv, pipe)
    pipe.seek(0)
    new_cv = serialization.deserialize(pipe)
    assert isinstance(new_cv, ssrmsd.SecondaryStructureRMSD)
    assert new_cv.getName() == "c7beta"
    assert new_cv.getOutputNames() == ["sum", "average"]
    assert new_cv.getAlignmentType() == alignment.optimal
    assert new_cv.getSwitchingFunction() == cv.getSwitchingFunction()
    assert new_cv.getTemplate() == cv.getTemplate()
    assert new_cv.getWindows()[0].atoms == cv.getWindows()[0].atoms

    positions = random_chain(30, 18)
    for other in [new_cv, copy.deepcopy(cv)]:
        for label in cv.getOutputNames():
            assert other.evaluate(positions).getValue(label) == pytest.approx(
                cv.evaluate(positions).getValue(label)
            )

    template = ssrmsd.ReferenceTemplate("serialized", random_points(10, 19), 5)
    for obj in [template, alignment.drmsd, AltMinimum(beta=3.0, label="soft")]:
        pipe = io.StringIO()
        serialization.serialize(obj, pipe)
        pipe.seek(0)
        assert serialization.deserialize(pipe) == obj


def test_unit_expressions():
    """
    Test that units are rebuilt from their names and that other names are refused.

    """
    for original in [
        unit.nanometers,
        unit.dalton * unit.nanometers**2,
        unit.kilojoules_per_mole / unit.nanometers,
    ]:
        rebuilt = ssrmsd.units.Unit(str(original))
        assert (1 * rebuilt).value_in_unit(original) == pytest.approx(1.0)
    with pytest.raises(ValueError, match="Unknown unit"):
        ssrmsd.units.Unit("not_a_unit")
    with pytest.raises(ValueError, match="Invalid unit expression"):
        ssrmsd.units.Unit("nanometer + dalton")


def test_constructor_annotations():
    """
    Test that every constructor argument is annotated.

    """
    signature = inspect.signature(ssrmsd.SecondaryStructureRMSD.__init__).parameters
    for name, parameter in signature.items():
        if name != "self":
            assert parameter.annotation is not inspect.Parameter.empty


def test_context_accessors():
    """
    Test the evaluation of a collective variable at an OpenMM context.

    """
    system = openmm.System()
    masses = np.tile([12.0, 16.0, 14.0, 12.0, 12.0], 5)
    for mass in masses:
        system.addParticle(mass)
    system.setDefaultPeriodicBoxVectors(
        openmm.Vec3(5, 0, 0), openmm.Vec3(0, 5, 0), openmm.Vec3(0, 0, 5)
    )
    integrator = openmm.VerletIntegrator(0)
    platform = openmm.Platform.getPlatformByName("Reference")
    context = openmm.Context(system, integrator, platform)
    positions = random_chain(25, 20) + 1.0
    context.setPositions(unit.Quantity(positions, unit.nanometers))

    cv = ssrmsd.SecondaryStructureRMSD(
        [range(25)],
        helix_template(),
        alignment.optimal,
        RationalSwitchingFunction(0.5),
        [SwitchingSum(), Lowest()],
        pbc=True,
    )
    output = cv.evaluate(positions, np.diag([5.0, 5.0, 5.0]))
    value = cv.getValue(context)
    assert value.unit.is_dimensionless()
    assert value.value == pytest.approx(output.getValue("sum"))
    lowest = cv.getValue(context, "lowest")
    assert lowest.value_in_unit(unit.nanometers) == pytest.approx(
        output.getValue("lowest")
    )
    values = cv.getValues(context)
    assert list(values) == ["sum", "lowest"]
    assert (1 * cv.getOutputUnit("lowest")).value_in_unit(unit.nanometers) == 1

    derivatives = cv.getDerivatives(context, "lowest")
    assert derivatives.shape == (25, 3)
    assert derivatives == pytest.approx(output.getGradient("lowest", 25))

    mass = cv.getEffectiveMass(context, "lowest")
    expected = compute_effective_mass(derivatives, masses)
    assert mass.value_in_unit(unit.dalton) == pytest.approx(expected)
    mass_unit = unit.dalton * unit.nanometers**2
    assert (1 * cv.getMassUnit()).value_in_unit(mass_unit) == pytest.approx(1.0)


def test_add_to_buffer():
    """
    Test that derivatives are scattered into a host buffer.

    """
    cv = ssrmsd.SecondaryStructureRMSD(
        [range(2, 27)],
        helix_template(),
        alignment.simple,
        RationalSwitchingFunction(0.5),
    )
    positions = np.vstack([np.zeros((2, 3)), random_chain(25, 21), np.ones((3, 3))])
    output = cv.evaluate(positions)
    assert list(output.getAtoms()) == list(range(2, 27))
    forces = np.ones((30, 3))
    output.addToBuffer(forces, scale=-2.0)
    assert forces == pytest.approx(1.0 - 2.0 * output.getGradient(numAtoms=30))
    assert np.all(forces[:2] == 1.0) and np.all(forces[27:] == 1.0)
