import sys

import connwright


def main() -> int:
    if len(sys.argv) < 3:
        print('usage: socks_fetch.py <proxy-host:port> <url> [--insecure]')
        return 2

    proxy_host, _, proxy_port = sys.argv[1].rpartition(':')
    url = sys.argv[2]
    config = {'insecure?': '--insecure' in sys.argv[3:]}

    manager = connwright.build_socks_manager(proxy_host, int(proxy_port), config)
    exit_code = 1
    try:
        with connwright.client(manager) as client:
            response = client.get(url)
        print(f'{response.status_code} {response.reason_phrase} via {proxy_host}:{proxy_port}')
        print(response.text[:500])
        exit_code = 0
    except Exception as exc:
        print(f'Error fetching {url} through the proxy {exc}')
    finally:
        connwright.shutdown(manager)

    return exit_code


if __name__ == '__main__':
    sys.exit(main())
