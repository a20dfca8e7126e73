"""Tests for the device stats reader."""

import pytest

from amdmemtop.gpu import find_device_dir, parse_counter, read_counter, read_device_stats
from amdmemtop.models import DeviceMemoryStats, NoDeviceFound

from conftest import MIB, write_device


def full_device(drm_root, card="card0"):
    return write_device(
        drm_root,
        card,
        vram_used=str(100 * MIB),
        vram_total=str(512 * MIB),
        gtt_used=str(500 * MIB),
        gtt_total=str(2048 * MIB),
    )


class TestParseCounter:
    """Tests for parse_counter."""

    def test_plain_decimal(self):
        """Test a plain decimal parses exactly."""
        assert parse_counter("536870912") == 536870912

    def test_surrounding_whitespace(self):
        """Test whitespace and the trailing newline are ignored."""
        assert parse_counter("  4096\n") == 4096

    @pytest.mark.parametrize("text", ["", "abc", "-1", "12.5", "0x10"])
    def test_rejects_malformed(self, text):
        """Test anything but an unsigned decimal raises ValueError."""
        with pytest.raises(ValueError):
            parse_counter(text)


class TestReadCounter:
    """Tests for read_counter."""

    def test_missing_file_reads_zero(self, tmp_path):
        """Test a missing file degrades to zero."""
        assert read_counter(str(tmp_path / "nope")) == 0

    def test_malformed_file_reads_zero(self, tmp_path):
        """Test unparsable content degrades to zero."""
        path = tmp_path / "counter"
        path.write_text("garbage\n")
        assert read_counter(str(path)) == 0


class TestFindDeviceDir:
    """Tests for device discovery."""

    def test_no_cards(self, drm_root):
        """Test an empty DRM directory raises NoDeviceFound."""
        with pytest.raises(NoDeviceFound, match="no AMD GPU found"):
            find_device_dir(str(drm_root))

    def test_card_without_accounting_is_ignored(self, drm_root):
        """Test cards lacking mem_info_vram_used are not candidates."""
        (drm_root / "card0" / "device").mkdir(parents=True)
        full_device(drm_root, "card1")
        assert find_device_dir(str(drm_root)) == str(drm_root / "card1" / "device")

    def test_first_card_wins(self, drm_root):
        """Test the first matching card in sorted order is chosen."""
        full_device(drm_root, "card1")
        full_device(drm_root, "card0")
        assert find_device_dir(str(drm_root)) == str(drm_root / "card0" / "device")


class TestReadDeviceStats:
    """Tests for read_device_stats."""

    def test_reads_all_counters(self, drm_root):
        """Test every counter equals the file contents."""
        full_device(drm_root)
        stats = read_device_stats(str(drm_root))
        assert stats == DeviceMemoryStats(
            vram_total=512 * MIB,
            vram_used=100 * MIB,
            gtt_total=2048 * MIB,
            gtt_used=500 * MIB,
        )

    def test_partial_data(self, drm_root):
        """Test unreadable counters read as zero while others are kept."""
        write_device(drm_root, vram_used="1000\n", vram_total="oops", gtt_used=" 300 ")
        stats = read_device_stats(str(drm_root))
        assert stats.vram_used == 1000
        assert stats.vram_total == 0
        assert stats.gtt_used == 300
        assert stats.gtt_total == 0

    def test_used_above_total_passes_through(self, drm_root):
        """Test used > total is reported as read, not corrected."""
        write_device(drm_root, vram_used="900", vram_total="100", gtt_used="5", gtt_total="1")
        stats = read_device_stats(str(drm_root))
        assert stats.vram_used == 900
        assert stats.vram_total == 100

    def test_no_device(self, drm_root):
        """Test a machine without an AMD GPU raises NoDeviceFound."""
        with pytest.raises(NoDeviceFound):
            read_device_stats(str(drm_root))
