import unittest
from dataclasses import replace

import numpy as np

from swarmid.core.config import default_configuration
from swarmid.core.particle_swarm import (
    POSITION_LOWER,
    POSITION_UPPER,
    Particle,
    ParticleSwarmDetector,
    inertia_at,
    threshold_fitness,
    threshold_scores,
    velocity_limits,
)
from swarmid.core.types import AnomalyStatus, AnomalyType, InvalidArgumentError

from traffic_fixtures import RecordingRepository, beacon_batch, ddos_batch, port_scan_batch


class ThresholdFitnessTest(unittest.TestCase):
    def test_port_scan_above_threshold(self):
        position = np.array([50.0, 100.0, 75.0, 10.0, 60.0, 1.0])
        scores = dict(threshold_scores(port_scan_batch(100), position))
        self.assertAlmostEqual(scores[AnomalyType.PORT_SCAN], 60.0)
        self.assertEqual(scores[AnomalyType.DDOS], 0.0)

    def test_port_scan_near_threshold(self):
        position = np.array([100.0, 100.0, 75.0, 10.0, 60.0, 0.5])
        scores = dict(threshold_scores(port_scan_batch(80), position))
        self.assertAlmostEqual(scores[AnomalyType.PORT_SCAN], 7.5)

    def test_beacon_regularity(self):
        position = np.array([50.0, 100.0, 50.0, 10.0, 600.0, 1.0])
        scores = dict(threshold_scores(beacon_batch(), position))
        self.assertAlmostEqual(scores[AnomalyType.COMMAND_AND_CONTROL], 50.0)

    def test_fitness_capped(self):
        position = np.array([5.0, 10.0, 75.0, 10.0, 60.0, 1.0])
        self.assertEqual(threshold_fitness(port_scan_batch(100) + ddos_batch(150), position, 100), 100)


class SearchStepTest(unittest.TestCase):
    def setUp(self):
        self.config = replace(default_configuration("PSO"), max_velocity=1000.0)
        self.limit = velocity_limits(self.config.max_velocity)

    def _particle(self, position, velocity):
        position = np.asarray(position, dtype=float)
        return Particle(0, position.copy(), np.asarray(velocity, dtype=float), best_position=position.copy())

    def test_position_bounds(self):
        np.testing.assert_allclose(POSITION_LOWER, [5.0, 10.0, 30.0, 1.0, 10.0, 0.1])
        np.testing.assert_allclose(POSITION_UPPER, [100.0, 200.0, 100.0, 50.0, 600.0, 1.0])

    def test_velocity_limits(self):
        np.testing.assert_allclose(velocity_limits(10.0), [10.0, 10.0, 10.0, 10.0, 10.0, 1.0])

    def test_velocity_update(self):
        position = np.array([50.0, 100.0, 60.0, 20.0, 120.0, 0.5])
        particle = self._particle(position, [1.0, -2.0, 3.0, -4.0, 5.0, -0.05])
        ParticleSwarmDetector._move(particle, position.copy(), 0.5, self.config, self.limit,
                                    np.random.default_rng(0))
        np.testing.assert_allclose(particle.velocity, [0.5, -1.0, 1.5, -2.0, 2.5, -0.025])
        np.testing.assert_allclose(particle.position, position + particle.velocity)

    def test_clamped_at_upper_bounds(self):
        particle = self._particle(POSITION_UPPER, np.full(6, 1e6))
        ParticleSwarmDetector._move(particle, POSITION_UPPER.copy(), 0.9, self.config, self.limit,
                                    np.random.default_rng(0))
        np.testing.assert_allclose(particle.velocity, [1000.0] * 5 + [100.0])
        np.testing.assert_allclose(particle.position, POSITION_UPPER)

    def test_clamped_at_lower_bounds(self):
        particle = self._particle(POSITION_LOWER, np.full(6, -1e6))
        ParticleSwarmDetector._move(particle, POSITION_LOWER.copy(), 0.9, self.config, self.limit,
                                    np.random.default_rng(0))
        np.testing.assert_allclose(particle.velocity, [-1000.0] * 5 + [-100.0])
        np.testing.assert_allclose(particle.position, POSITION_LOWER)

    def test_random_steps_stay_inside_bounds(self):
        rng = np.random.default_rng(21)
        far_best = POSITION_UPPER * 10
        for _ in range(200):
            particle = self._particle(rng.uniform(POSITION_LOWER, POSITION_UPPER), rng.uniform(-1e4, 1e4, 6))
            particle.best_position = rng.uniform(-1e3, 1e3, 6)
            ParticleSwarmDetector._move(particle, far_best, 0.9, self.config, self.limit, rng)
            self.assertTrue(np.all(np.abs(particle.velocity) <= self.limit))
            self.assertTrue(np.all(particle.position >= POSITION_LOWER))
            self.assertTrue(np.all(particle.position <= POSITION_UPPER))

    def test_inertia_decays_linearly(self):
        config = default_configuration("PSO")
        weights = [inertia_at(config, i) for i in range(config.max_iterations)]
        self.assertAlmostEqual(weights[0], 0.9)
        self.assertAlmostEqual(inertia_at(config, 5), 0.65)
        self.assertAlmostEqual(inertia_at(config, config.max_iterations), 0.4)
        steps = np.diff(weights)
        np.testing.assert_allclose(steps, np.full(len(steps), -0.05))
        self.assertTrue(all(w > config.min_inertia_weight for w in weights))

    def test_optimized_thresholds_stay_inside_bounds(self):
        detector = ParticleSwarmDetector(RecordingRepository())
        best, fitness = detector._optimize(port_scan_batch(), self.config, np.random.default_rng(8))
        self.assertTrue(np.all(best >= POSITION_LOWER))
        self.assertTrue(np.all(best <= POSITION_UPPER))
        self.assertGreater(fitness, 0)



class ParticleSwarmDetectorTest(unittest.TestCase):
    def setUp(self):
        self.repository = RecordingRepository()
        self.detector = ParticleSwarmDetector(self.repository, seed=5)

    def test_requires_repository(self):
        with self.assertRaises(InvalidArgumentError):
            ParticleSwarmDetector(None)

    def test_empty_batch_is_normal(self):
        result = self.detector.detect([])
        self.assertEqual(len(result), 1)
        self.assertEqual(result[0].type, AnomalyType.NORMAL)
        self.assertEqual(result[0].score, 0)
        self.assertEqual(result[0].status, AnomalyStatus.FALSE_POSITIVE)

    def test_port_scan(self):
        result = self.detector.detect(port_scan_batch(), rng=np.random.default_rng(42))
        self.assertEqual(len(result), 1)
        self.assertEqual(result[0].type, AnomalyType.PORT_SCAN)
        self.assertGreaterEqual(result[0].score, 70)
        self.assertEqual(result[0].algorithm, "Particle Swarm Optimization")

    def test_ddos(self):
        anomaly = self.detector.detect(ddos_batch(150), rng=np.random.default_rng(42))[0]
        self.assertEqual(anomaly.type, AnomalyType.DDOS)
        self.assertGreaterEqual(anomaly.score, 75)
        self.assertEqual(anomaly.status, AnomalyStatus.NEW)

    def test_score_never_exceeds_maximum(self):
        self.detector.reconfigure(replace(default_configuration("PSO"), max_anomaly_score=30))
        anomaly = self.detector.detect(ddos_batch())[0]
        self.assertLessEqual(anomaly.score, 30)

    def test_confirmed_feedback(self):
        anomaly = self.detector.detect(ddos_batch())[0]
        self.detector.apply_feedback(anomaly, True)
        config = self.detector.configuration()
        self.assertAlmostEqual(config.inertia_weight, 0.945)
        self.assertAlmostEqual(config.cognitive_component, 2.04)
        self.assertAlmostEqual(config.social_component, 2.0)

        self.detector.apply_feedback(anomaly, True)
        self.assertAlmostEqual(self.detector.configuration().inertia_weight, 0.95)
        self.assertEqual(anomaly.status, AnomalyStatus.CONFIRMED)

    def test_false_positive_feedback(self):
        anomaly = self.detector.detect(ddos_batch())[0]
        self.detector.apply_feedback(anomaly, False)
        config = self.detector.configuration()
        self.assertAlmostEqual(config.inertia_weight, 0.855)
        self.assertAlmostEqual(config.social_component, 2.04)
        self.assertEqual(anomaly.status, AnomalyStatus.FALSE_POSITIVE)

        for _ in range(50):
            self.detector.apply_feedback(anomaly, False)
        config = self.detector.configuration()
        self.assertAlmostEqual(config.inertia_weight, config.min_inertia_weight)
        self.assertAlmostEqual(config.social_component, 3.0)

    def test_failed_update_keeps_configuration(self):
        detector = ParticleSwarmDetector(RecordingRepository(fail_update=True), seed=1)
        anomaly = detector.detect(ddos_batch())[0]
        before = detector.configuration()
        with self.assertRaises(RuntimeError):
            detector.apply_feedback(anomaly, False)
        self.assertIs(detector.configuration(), before)

    def test_reconfigure_none(self):
        with self.assertRaises(InvalidArgumentError):
            self.detector.reconfigure(None)


if __name__ == "__main__":
    unittest.main()
