import unittest

from opencanvas.connections import build_edge, connect, connection_error, is_valid_connection, reconcile
from opencanvas.errors import ValidationError
from opencanvas.handles import EDGE_COLORS
from opencanvas.node_registry import registry
from opencanvas.schemas import Connection, Edge


def wire(source, source_handle, target, target_handle):
    return Connection(source=source, sourceHandle=source_handle, target=target, targetHandle=target_handle)


class TestConnectionRules(unittest.TestCase):
    def setUp(self):
        self.nodes = [
            registry.create_node("textInput", node_id="text-1"),
            registry.create_node("textInput", node_id="text-2"),
            registry.create_node("imageUpload", node_id="upload-1"),
            registry.create_node("imagen", node_id="imagen-1"),
            registry.create_node("nanoBanana", node_id="nano-1"),
            registry.create_node("veo3", node_id="veo-1"),
        ]

    def test_text_into_prompt_is_valid(self):
        self.assertTrue(is_valid_connection(self.nodes, [], wire("text-1", "textOutput", "imagen-1", "prompt")))

    def test_occupied_input_is_rejected(self):
        edges = connect(self.nodes, [], wire("text-1", "textOutput", "imagen-1", "prompt"))
        second = wire("text-2", "textOutput", "imagen-1", "prompt")
        self.assertFalse(is_valid_connection(self.nodes, edges, second))
        self.assertIn("already connected", connection_error(self.nodes, edges, second))

    def test_occupied_check_ignores_other_handles(self):
        edges = connect(self.nodes, [], wire("text-1", "textOutput", "nano-1", "prompt"))
        self.assertTrue(is_valid_connection(self.nodes, edges, wire("upload-1", "imageOutput", "nano-1", "image_0")))

    def test_wrong_source_kind_is_rejected(self):
        self.assertFalse(is_valid_connection(self.nodes, [], wire("upload-1", "imageOutput", "imagen-1", "prompt")))
        self.assertFalse(is_valid_connection(self.nodes, [], wire("text-1", "textOutput", "veo-1", "video")))

    def test_missing_target_handle_is_rejected(self):
        self.assertFalse(is_valid_connection(self.nodes, [], wire("upload-1", "imageOutput", "nano-1", "image_3")))
        self.assertFalse(is_valid_connection(self.nodes, [], wire("upload-1", "imageOutput", "veo-1", "ref_image_0")))

    def test_unknown_target_node_is_rejected(self):
        self.assertFalse(is_valid_connection(self.nodes, [], wire("text-1", "textOutput", "ghost", "prompt")))

    def test_incomplete_candidate_is_rejected(self):
        self.assertFalse(is_valid_connection(self.nodes, [], Connection(source="text-1", target="imagen-1")))
        self.assertFalse(is_valid_connection(self.nodes, [], wire("text-1", "textOutput", "imagen-1", "")))

    def test_validation_only_reads_local_metadata(self):
        # The source node does not need to be on the canvas for the rules to pass
        self.assertTrue(is_valid_connection(self.nodes, [], wire("elsewhere", "textOutput", "imagen-1", "prompt")))


class TestConnect(unittest.TestCase):
    def setUp(self):
        self.nodes = [
            registry.create_node("textInput", node_id="t1"),
            registry.create_node("imagen", node_id="g1"),
        ]

    def test_connect_appends_styled_edge(self):
        edges = connect(self.nodes, [], wire("t1", "textOutput", "g1", "prompt"))
        self.assertEqual(len(edges), 1)
        edge = edges[0]
        self.assertEqual(edge.id, "xy-edge__t1textOutput-g1prompt")
        self.assertTrue(edge.animated)
        self.assertEqual(edge.style, {"stroke": EDGE_COLORS["text"], "strokeWidth": 2})
        self.assertEqual(edge.model_dump()["markerEnd"]["type"], "arrowclosed")

    def test_connect_rejects_second_edge_into_input(self):
        edges = connect(self.nodes, [], wire("t1", "textOutput", "g1", "prompt"))
        with self.assertRaises(ValidationError):
            connect(self.nodes, edges, wire("t1", "textOutput", "g1", "prompt"))

    def test_connect_requires_source(self):
        with self.assertRaises(ValidationError):
            connect(self.nodes, [], Connection(target="g1", targetHandle="prompt", sourceHandle="textOutput"))

    def test_connect_leaves_input_list_alone(self):
        edges = []
        connect(self.nodes, edges, wire("t1", "textOutput", "g1", "prompt"))
        self.assertEqual(edges, [])

    def test_build_edge_not_animated(self):
        edge = build_edge(wire("t1", "textOutput", "g1", "prompt"), animated=False)
        self.assertFalse(edge.animated)


class TestReconcile(unittest.TestCase):
    def test_shrinking_input_count_prunes_edges(self):
        nano = registry.create_node("nanoBanana", node_id="nano")
        nano.data["imageInputCount"] = 3
        upload = registry.create_node("imageUpload", node_id="up")
        nodes = [upload, nano]
        edges = connect(reconcile(nodes, []).nodes, [], wire("up", "imageOutput", "nano", "image_2"))
        edges = connect(reconcile(nodes, []).nodes, edges, wire("up", "imageOutput", "nano", "image_0"))

        nano.data["imageInputCount"] = 1
        result = reconcile(nodes, edges)

        self.assertEqual(result.prunedEdgeIds, ["xy-edge__upimageOutput-nanoimage_2"])
        self.assertEqual([e.targetHandle for e in result.edges], ["image_0"])
        refreshed = next(n for n in result.nodes if n.id == "nano")
        self.assertEqual([h["id"] for h in refreshed.data["inputs"]], ["prompt", "image_0"])

    def test_edges_with_missing_nodes_are_pruned(self):
        nodes = [registry.create_node("imagen", node_id="g1")]
        edges = [Edge(id="e1", source="gone", target="g1", sourceHandle="textOutput", targetHandle="prompt")]
        result = reconcile(nodes, edges)
        self.assertEqual(result.prunedEdgeIds, ["e1"])
        self.assertEqual(result.edges, [])

    def test_consistent_graph_is_untouched(self):
        nodes = [registry.create_node("textInput", node_id="t1"), registry.create_node("imagen", node_id="g1")]
        edges = connect(nodes, [], wire("t1", "textOutput", "g1", "prompt"))
        result = reconcile(nodes, edges)
        self.assertEqual(result.prunedEdgeIds, [])
        self.assertEqual(result.edges, edges)


if __name__ == "__main__":
    unittest.main()
