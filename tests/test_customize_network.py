"""Tests for customize/network.py - static network configuration."""

from piflash.answers import parse_answers
from piflash.customize.network import (
    WPA_SUPPLICANT_FILENAME,
    configure_network,
    remove_interface_block,
    render_wpa_supplicant,
)

STATIC_ETH0 = {
    "static_ip": "192.168.1.50",
    "gateway_ip": "192.168.1.1",
    "subnet_mask": "24",
    "dns_server": "1.1.1.1",
}


def _blocks(text, interface):
    return [line for line in text.splitlines() if line == f"interface {interface}"]


class TestRenderWpaSupplicant:
    """Tests for render_wpa_supplicant function."""

    def test_passphrase(self):
        """Passphrases are quoted."""
        content = render_wpa_supplicant("home", "secret123", "GB")

        assert "country=GB\n" in content
        assert '    ssid="home"\n' in content
        assert '    psk="secret123"\n' in content
        assert content.startswith("ctrl_interface=DIR=/var/run/wpa_supplicant")

    def test_hex_key(self):
        """A raw 64-digit key is written unquoted."""
        key = "0123456789abcdef" * 4
        assert f"    psk={key}\n" in render_wpa_supplicant("home", key, "US")

    def test_open_network(self):
        """Open networks use key_mgmt=NONE."""
        content = render_wpa_supplicant("cafe", None, "US")

        assert "key_mgmt=NONE" in content
        assert "psk" not in content


class TestRemoveInterfaceBlock:
    """Tests for remove_interface_block function."""

    def test_removes_block(self):
        """The block is removed through the next blank line."""
        lines = [
            "hostname",
            "",
            "interface eth0",
            "static ip_address=10.0.0.5/24",
            "",
            "interface wlan0",
            "static ip_address=10.0.0.6/24",
        ]

        assert remove_interface_block(lines, "eth0") == [
            "hostname",
            "",
            "interface wlan0",
            "static ip_address=10.0.0.6/24",
        ]

    def test_commented_example_kept(self):
        """Commented examples are not blocks."""
        lines = ["#interface eth0", "#static ip_address=192.168.0.10/24"]
        assert remove_interface_block(lines, "eth0") == lines

    def test_trailing_blank_lines_collapsed(self):
        """Blank lines left at the end are dropped."""
        lines = ["hostname", "", "interface eth0", "nodhcp"]
        assert remove_interface_block(lines, "eth0") == ["hostname"]


class TestConfigureNetwork:
    """Tests for configure_network function."""

    def test_dhcp_untouched(self, boot_fs, root_fs, settings):
        """Without a static IP nothing is written."""
        dhcpcd = root_fs / "etc" / "dhcpcd.conf"
        before = dhcpcd.read_text()

        assert configure_network(boot_fs, root_fs, parse_answers({}), settings) is False
        assert dhcpcd.read_text() == before

    def test_static_eth0(self, boot_fs, root_fs, settings):
        """A static block with DHCP disabled is appended."""
        answers = parse_answers(STATIC_ETH0)

        assert configure_network(boot_fs, root_fs, answers, settings) is True

        content = (root_fs / "etc" / "dhcpcd.conf").read_text()
        assert content.endswith(
            "\n\ninterface eth0\n"
            "static ip_address=192.168.1.50/24\n"
            "static routers=192.168.1.1\n"
            "static domain_name_servers=1.1.1.1\n"
            "nodhcp\n"
        )
        assert content.startswith("# A sample configuration for dhcpcd.")
        assert not (boot_fs / WPA_SUPPLICANT_FILENAME).exists()

    def test_rerun_keeps_one_block(self, boot_fs, root_fs, settings):
        """Running twice leaves exactly one block, with the latest address."""
        configure_network(boot_fs, root_fs, parse_answers(STATIC_ETH0), settings)
        changed = dict(STATIC_ETH0, static_ip="192.168.1.60")
        configure_network(boot_fs, root_fs, parse_answers(changed), settings)

        content = (root_fs / "etc" / "dhcpcd.conf").read_text()
        assert len(_blocks(content, "eth0")) == 1
        assert "192.168.1.60/24" in content
        assert "192.168.1.50" not in content
        assert content.count("nodhcp") == 1

    def test_defaults_applied(self, boot_fs, root_fs, settings):
        """Missing subnet and DNS fall back to the settings defaults."""
        answers = parse_answers({"static_ip": "10.0.0.5", "gateway_ip": "10.0.0.1"})

        configure_network(boot_fs, root_fs, answers, settings)

        content = (root_fs / "etc" / "dhcpcd.conf").read_text()
        assert "static ip_address=10.0.0.5/24" in content
        assert "static domain_name_servers=8.8.8.8" in content

    def test_wireless(self, boot_fs, root_fs, settings):
        """wlan0 also gets Wi-Fi credentials on the boot partition."""
        answers = parse_answers(
            dict(
                STATIC_ETH0,
                network_interface="wlan0",
                wifi_ssid="home",
                wifi_psk="secret123",
                wifi_country="de",
            )
        )

        configure_network(boot_fs, root_fs, answers, settings)

        wpa = (boot_fs / WPA_SUPPLICANT_FILENAME).read_text()
        assert 'ssid="home"' in wpa
        assert "country=DE" in wpa
        content = (root_fs / "etc" / "dhcpcd.conf").read_text()
        assert len(_blocks(content, "wlan0")) == 1
        assert _blocks(content, "eth0") == []

    def test_missing_dhcpcd_conf(self, boot_fs, tmp_path, settings):
        """A missing dhcpcd.conf is created with only the static block."""
        root = tmp_path / "nmroot"
        root.mkdir()

        configure_network(boot_fs, root, parse_answers(STATIC_ETH0), settings)

        content = (root / "etc" / "dhcpcd.conf").read_text()
        assert content.startswith("interface eth0\n")
