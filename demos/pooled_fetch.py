import asyncio
import sys

import connwright


def response_str(url: str, response) -> str:
    sep = '-------------------------'
    return (
        f'\n{sep}\nURL: {url}\n'
        f'Status: {response.status_code}\n'
        f'Content-Type: {response.headers.get("content-type", "N/A")}\n'
        f'Bytes: {len(response.content)}\n{sep}'
    )


async def main() -> int:
    urls = sys.argv[1:]
    if not urls:
        urls = [input('Enter a URL to fetch: ').strip()]

    exit_code = 0
    async with connwright.async_connection_pool({'threads': 8, 'default-per-route': 4}) as manager:
        async with connwright.async_client(follow_redirects=True) as client:
            results = await asyncio.gather(
                *(client.get(url) for url in urls),
                return_exceptions=True,
            )
        for url, result in zip(urls, results):
            if isinstance(result, Exception):
                print(f'Error fetching {url}, check your network connection {result}')
                exit_code = 1
                continue
            print(response_str(url, result))
        print(f'Pool: {manager.total_stats()}')

    return exit_code


if __name__ == '__main__':
    sys.exit(
        asyncio.run(main())
    )
