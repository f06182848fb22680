import pytest
from PIL import Image

from bgremover import cli
from bgremover.config import AcceleratedDevice, DefaultDevice
from bgremover.pipeline import BackgroundRemover

from .conftest import StubSession, constant_output


@pytest.fixture
def fake_remover(monkeypatch):
    """Replace model loading with a stub session and record how it was built."""
    built = {}

    def _factory(model, options, device=None, backend="auto"):
        built.update(model=model, options=options, device=device, backend=backend)
        return BackgroundRemover.from_session(StubSession(constant_output(1.0, options)), options)

    monkeypatch.setattr(cli, "BackgroundRemover", _factory)
    return built


def test_single_is_the_default_command():
    args = cli.parse_args(["-m", "m.onnx", "-i", "in.jpg", "-o", "out.png"])
    assert args.command == "single"
    assert args.size == 320
    assert args.parameter == "input_image"
    assert args.gpu is None


def test_batch_arguments():
    args = cli.parse_args(["batch", "-m", "m.onnx", "-i", "a.jpg", "b.jpg", "-o", "out", "-c", "4", "-f", "x_", "-g", "1"])
    assert args.command == "batch"
    assert args.input == ["a.jpg", "b.jpg"]
    assert args.concurrency == 4
    assert args.prefix == "x_"
    assert args.gpu == 1


@pytest.mark.parametrize("flag, value", [("-g", "-1"), ("-s", "0")])
def test_rejects_invalid_numbers(flag, value):
    with pytest.raises(SystemExit):
        cli.parse_args(["single", "-m", "m.onnx", "-i", "a", "-o", "b", flag, value])


def test_single_writes_png(fake_remover, tmp_path, capsys):
    source = tmp_path / "in.jpg"
    Image.new("RGB", (12, 9), (0, 255, 0)).save(source)
    output = tmp_path / "nested" / "out.png"

    code = cli.main(["-m", "u2net.onnx", "-s", "64", "-p", "img", "-g", "0", "-i", str(source), "-o", str(output)])

    assert code == 0
    assert fake_remover["options"].input_size == (64, 64)
    assert fake_remover["options"].output_size == (64, 64)
    assert fake_remover["options"].input_parameter_name == "img"
    assert fake_remover["device"] == AcceleratedDevice(0)
    with Image.open(output) as result:
        assert result.mode == "RGBA"
        assert result.size == (12, 9)
    assert "Background removed in" in capsys.readouterr().out


def test_batch_writes_pngs(fake_remover, tmp_path):
    inputs = []
    for name in ("a.jpg", "b.jpg"):
        path = tmp_path / name
        Image.new("RGB", (5, 5)).save(path)
        inputs.append(str(path))
    out_dir = tmp_path / "out"

    code = cli.main(["batch", "-m", "u2net.onnx", "-i", *inputs, "-o", str(out_dir), "-c", "2", "-f", "nobg_"])

    assert code == 0
    assert fake_remover["device"] == DefaultDevice()
    assert sorted(p.name for p in out_dir.iterdir()) == ["nobg_a.png", "nobg_b.png"]


def test_batch_output_collision_exits_with_error(fake_remover, tmp_path, capsys):
    path = tmp_path / "a.png"
    Image.new("RGB", (5, 5)).save(path)

    code = cli.main(["batch", "-m", "u2net.onnx", "-i", str(path), "-o", str(tmp_path)])

    assert code == 1
    assert "overwrite" in capsys.readouterr().err


def test_missing_model_exits_with_error(tmp_path, capsys):
    code = cli.main(["-m", str(tmp_path / "missing.onnx"), "-i", "in.jpg", "-o", str(tmp_path / "out.png")])

    assert code == 1
    assert "Could not load model" in capsys.readouterr().err


def test_missing_input_exits_with_error(fake_remover, tmp_path, capsys):
    code = cli.main(["-m", "u2net.onnx", "-i", str(tmp_path / "nope.jpg"), "-o", str(tmp_path / "out.png")])

    assert code == 1
    assert "FileNotFoundError" in capsys.readouterr().err


def test_single_refuses_to_overwrite_its_input(fake_remover, tmp_path, capsys):
    path = tmp_path / "photo.png"
    Image.new("RGB", (5, 5), (1, 2, 3)).save(path)
    before = path.read_bytes()

    code = cli.main(["-m", "u2net.onnx", "-i", str(path), "-o", str(tmp_path / "." / "photo.png")])

    assert code == 1
    assert "overwrite" in capsys.readouterr().err
    assert path.read_bytes() == before
    assert fake_remover == {}
