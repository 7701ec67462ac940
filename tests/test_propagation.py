import unittest

from opencanvas.connections import connect
from opencanvas.node_registry import registry
from opencanvas.propagation import propagate
from opencanvas.schemas import Connection, Edge


def wire(source, source_handle, target, target_handle):
    return Connection(source=source, sourceHandle=source_handle, target=target, targetHandle=target_handle)


def by_id(nodes, node_id):
    return next(n for n in nodes if n.id == node_id)


class TestPropagation(unittest.TestCase):
    def setUp(self):
        self.text = registry.create_node("textInput", node_id="t1")
        self.text.data["text"] = "a red fox at dawn"
        self.imagen = registry.create_node("imagen", node_id="g1")
        self.nodes = [self.text, self.imagen]
        self.edges = connect(self.nodes, [], wire("t1", "textOutput", "g1", "prompt"))

    def test_text_reaches_connected_prompt(self):
        result = propagate(self.nodes, self.edges)
        self.assertEqual(by_id(result.nodes, "g1").data["connectedPrompt"], "a red fox at dawn")
        self.assertEqual(result.changed, ["g1"])

    def test_second_run_changes_nothing(self):
        first = propagate(self.nodes, self.edges)
        second = propagate(first.nodes, self.edges)
        self.assertEqual(second.changed, [])
        self.assertEqual(second.nodes, first.nodes)

    def test_unchanged_nodes_pass_through(self):
        result = propagate(self.nodes, self.edges)
        self.assertIs(by_id(result.nodes, "t1"), self.text)
        # Inputs are never modified in place
        self.assertNotIn("connectedPrompt", self.imagen.data)

    def test_empty_text_still_propagates(self):
        self.text.data["text"] = ""
        result = propagate(self.nodes, self.edges)
        self.assertEqual(by_id(result.nodes, "g1").data["connectedPrompt"], "")

    def test_image_inputs_map_to_indexed_fields(self):
        upload = registry.create_node("imageUpload", node_id="up")
        upload.data["imageUrl"] = "assets/image/up_1.png"
        nano = registry.create_node("nanoBanana", node_id="nano")
        nano.data["imageInputCount"] = 2
        nodes = [upload, nano]
        edges = connect(nodes, [], wire("up", "imageOutput", "nano", "image_1"))

        result = propagate(nodes, edges)

        data = by_id(result.nodes, "nano").data
        self.assertEqual(data["connectedImage_1"], "assets/image/up_1.png")
        self.assertNotIn("connectedImage_0", data)

    def test_generator_output_feeds_veo_first_frame(self):
        self.imagen.data["output"] = "assets/image/g1_out.png"
        veo = registry.create_node("veo3", node_id="v1")
        nodes = [self.imagen, veo]
        edges = connect(nodes, [], wire("g1", "imageOutput", "v1", "image"))

        result = propagate(nodes, edges)

        self.assertEqual(by_id(result.nodes, "v1").data["connectedImage"], "assets/image/g1_out.png")

    def test_generator_without_output_writes_nothing(self):
        veo = registry.create_node("veo3", node_id="v1")
        nodes = [self.imagen, veo]
        edges = connect(nodes, [], wire("g1", "imageOutput", "v1", "image"))

        result = propagate(nodes, edges)

        self.assertNotIn("connectedImage", by_id(result.nodes, "v1").data)
        self.assertEqual(result.changed, [])

    def test_mismatched_kind_is_not_written(self):
        nano = registry.create_node("nanoBanana", node_id="nano")
        edges = [Edge(id="bad", source="t1", target="nano", sourceHandle="textOutput", targetHandle="image_0")]
        result = propagate([self.text, nano], edges)
        self.assertNotIn("connectedImage_0", by_id(result.nodes, "nano").data)

    def test_edge_from_missing_source_is_ignored(self):
        edges = [Edge(id="e", source="ghost", target="g1", sourceHandle="textOutput", targetHandle="prompt")]
        result = propagate(self.nodes, edges)
        self.assertEqual(result.changed, [])

    def test_disconnect_keeps_stale_value_by_default(self):
        connected = propagate(self.nodes, self.edges).nodes
        result = propagate(connected, [])
        self.assertEqual(by_id(result.nodes, "g1").data["connectedPrompt"], "a red fox at dawn")
        self.assertEqual(result.changed, [])

    def test_disconnect_can_clear_values(self):
        connected = propagate(self.nodes, self.edges).nodes
        result = propagate(connected, [], clear_on_disconnect=True)
        self.assertNotIn("connectedPrompt", by_id(result.nodes, "g1").data)
        self.assertEqual(result.changed, ["g1"])


if __name__ == "__main__":
    unittest.main()
